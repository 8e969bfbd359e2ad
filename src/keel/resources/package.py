"""Provides the package resource, which is converged by the system's package manager."""

from dataclasses import dataclass
from typing import Optional

from keel.resources.api import Delta, Resource, resource
from keel.resources.utils import resolve_package_provider
from keel.systems.system import System
from keel.utils import ValidationError

@resource("package")
@dataclass(frozen=True)
class Package(Resource):
    """
    Installs or removes a system package. The title is the package name.

    The `ensure` attribute is one of `present` (or `installed`), `absent`, `latest`,
    or a specific version string. If `provider` is None, the package manager is
    detected on the system when the resource is examined.
    """

    ensure: str = "present"
    provider: Optional[str] = None

    def validate(self) -> None:
        if not self.title:
            raise ValidationError(f"{self.ref}: package name must be non-empty")
        if not isinstance(self.ensure, str) or not self.ensure:
            raise ValidationError(f"{self.ref}: ensure must be 'present', 'absent', 'latest' or a version string")

    def lock_keys(self) -> frozenset[str]:
        return frozenset(["package-manager"])

    @property
    def wanted_version(self) -> Optional[str]:
        """The specific version requested by `ensure`, if any."""
        if self.ensure in ["present", "installed", "absent", "latest"]:
            return None
        return self.ensure

    def examine(self, system: System, delta: Delta) -> None:
        provider = resolve_package_provider(system, self.provider)
        delta.context["provider"] = provider

        version = provider.installed_version(system, self.title)
        delta.initial_state(installed=version is not None, version=version)

        if self.ensure == "absent":
            delta.final_state(installed=False)
        elif self.ensure == "latest":
            delta.final_state(installed=True, version=provider.latest_version(system, self.title))
        else:
            delta.final_state(installed=True, version=self.wanted_version)

    def apply(self, system: System, delta: Delta) -> None:
        provider = delta.context["provider"]
        if self.ensure == "absent":
            provider.uninstall(system, self.title)
        else:
            provider.install(system, self.title, self.wanted_version)
