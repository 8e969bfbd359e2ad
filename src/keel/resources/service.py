"""Provides the service resource, which is converged by the system's service manager."""

from dataclasses import dataclass
from typing import Optional

from keel import logger
from keel.resources.api import Delta, Resource, resource
from keel.resources.utils import resolve_service_provider
from keel.systems.system import System
from keel.utils import ValidationError

@resource("service")
@dataclass(frozen=True)
class Service(Resource):
    """
    Manages the run state of a system service. The title is the service name.
    A service is refreshable: when notified by a changed resource it is restarted.
    """

    refreshable = True

    running: Optional[bool] = None
    """Whether the service should be running. None leaves the current state alone."""
    enable: Optional[bool] = None
    """Whether the service should be started on boot. None leaves the current state alone."""
    has_status: bool = True
    """Whether the service manager can report the status of this service. Otherwise the process table is used."""
    has_restart: bool = True
    """Whether the service supports restarting. Otherwise it is stopped and started on refresh."""
    provider: Optional[str] = None

    def validate(self) -> None:
        if not self.title:
            raise ValidationError(f"{self.ref}: service name must be non-empty")
        for attr in ["running", "enable"]:
            if getattr(self, attr) not in [None, True, False]:
                raise ValidationError(f"{self.ref}: {attr} must be a boolean or None")

    def lock_keys(self) -> frozenset[str]:
        return frozenset([f"service:{self.title}"])

    def examine(self, system: System, delta: Delta) -> None:
        provider = resolve_service_provider(system, self.provider)
        delta.context["provider"] = provider

        delta.initial_state(running=provider.is_running(system, self.title, self.has_status),
                            enabled=provider.is_enabled(system, self.title))
        delta.final_state(running=self.running, enabled=self.enable)

    def apply(self, system: System, delta: Delta) -> None:
        provider = delta.context["provider"]
        if delta.changed("running"):
            if self.running:
                provider.start(system, self.title)
            else:
                provider.stop(system, self.title)

        if delta.changed("enabled"):
            if self.enable:
                provider.enable(system, self.title)
            else:
                provider.disable(system, self.title)

    def refresh(self, system: System, delta: Delta, dry: bool) -> bool:
        assert delta.initial_state_dict is not None
        running = self.running if self.running is not None else delta.initial_state_dict["running"]
        if not running:
            logger.debug(f"{self.ref}: not running, skipping restart")
            return False
        if delta.changed("running"):
            logger.debug(f"{self.ref}: started in this run, skipping restart")
            return False

        if not dry:
            provider = delta.context["provider"]
            if self.has_restart:
                provider.restart(system, self.title)
            else:
                provider.stop(system, self.title)
                provider.start(system, self.title)
        return True
