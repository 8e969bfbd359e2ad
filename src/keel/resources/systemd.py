"""Provides the systemd service provider."""

from keel.resources.utils import ServiceProvider, service_provider
from keel.systems.system import System

def _show(system: System, service: str, prop: str) -> str:
    """Returns the value of a unit property."""
    return system.run(["systemctl", "show", "--value", "--property", prop, "--", service]).text()

def _is_running(system: System, service: str, has_status: bool) -> bool:
    if not has_status:
        return system.run(["pgrep", "--exact", "--", service], check=False).returncode == 0
    return _show(system, service, "ActiveState") in ["active", "activating"]

def _is_enabled(system: System, service: str) -> bool:
    return _show(system, service, "UnitFileState") == "enabled"

def _systemctl(action: str):
    def run(system: System, service: str) -> None:
        system.run(["systemctl", action, "--", service])
    return run

provider = service_provider(ServiceProvider(
    name="systemd",
    command="systemctl",
    is_running=_is_running,
    is_enabled=_is_enabled,
    start=_systemctl("start"),
    stop=_systemctl("stop"),
    restart=_systemctl("restart"),
    enable=_systemctl("enable"),
    disable=_systemctl("disable")))
