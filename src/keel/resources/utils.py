"""
Provides utility functions and provider registries for resources.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from keel.systems.system import System, find_command
from keel.utils import ApplyError, ValidationError

@dataclass(frozen=True)
class PackageProvider:
    """The functions a package manager must provide to converge package resources."""
    name: str
    """The name of the provider, as used in the `provider` attribute of packages."""
    command: str
    """The command whose presence indicates that this package manager is available."""
    installed_version: Callable[[System, str], Optional[str]]
    """Returns the installed version of a package, or None if it is not installed."""
    latest_version: Callable[[System, str], Optional[str]]
    """Returns the latest available version of a package, or None if it is unknown."""
    install: Callable[[System, str, Optional[str]], None]
    """Installs a package, optionally at a specific version."""
    uninstall: Callable[[System, str], None]
    """Uninstalls a package."""

@dataclass(frozen=True)
class ServiceProvider:
    """The functions a service manager must provide to converge service resources."""
    name: str
    """The name of the provider."""
    command: str
    """The command whose presence indicates that this service manager is available."""
    is_running: Callable[[System, str, bool], bool]
    """Returns whether a service is running. The flag tells whether the service supports status queries."""
    is_enabled: Callable[[System, str], bool]
    """Returns whether a service is started on boot."""
    start: Callable[[System, str], None]
    stop: Callable[[System, str], None]
    restart: Callable[[System, str], None]
    enable: Callable[[System, str], None]
    disable: Callable[[System, str], None]

package_providers: dict[str, PackageProvider] = {}
"""All registered package managers as a map from (provider name -> provider)."""

service_providers: dict[str, ServiceProvider] = {}
"""All registered service managers as a map from (provider name -> provider)."""

def package_provider(provider: PackageProvider) -> PackageProvider:
    """
    Registers the given package manager, such that package resources can use it
    either explicitly by name or after detecting its command on the managed system.
    """
    package_providers[provider.name] = provider
    return provider

def service_provider(provider: ServiceProvider) -> ServiceProvider:
    """
    Registers the given service manager, such that service resources can use it
    either explicitly by name or after detecting its command on the managed system.
    """
    service_providers[provider.name] = provider
    return provider

def resolve_package_provider(system: System, name: Optional[str]) -> PackageProvider:
    """
    Returns the package manager with the given name, or detects a suitable one on the system if name is None.

    Raises
    ------
    ApplyError
        No suitable package manager was found.
    """
    if name is not None:
        if name not in package_providers:
            raise ApplyError(f"Unknown package provider '{name}'")
        return package_providers[name]

    provider = find_command(system, {p.command: p for p in package_providers.values()})
    if provider is None:
        raise ApplyError(f"No supported package manager was found on the system. Searched commands: {[p.command for p in package_providers.values()]}")
    return provider

def resolve_service_provider(system: System, name: Optional[str]) -> ServiceProvider:
    """
    Returns the service manager with the given name, or detects a suitable one on the system if name is None.

    Raises
    ------
    ApplyError
        No suitable service manager was found.
    """
    if name is not None:
        if name not in service_providers:
            raise ApplyError(f"Unknown service provider '{name}'")
        return service_providers[name]

    provider = find_command(system, {p.command: p for p in service_providers.values()})
    if provider is None:
        raise ApplyError(f"No supported service manager was found on the system. Searched commands: {[p.command for p in service_providers.values()]}")
    return provider

def check_absolute_path(path: str, path_desc: str) -> None:
    """
    Asserts that a given path is non empty and absolute.

    Parameters
    ----------
    path
        The path to check.
    path_desc
        Description of the path for error messages.

    Raises
    ------
    ValidationError
        The path is empty or relative.
    """
    if not path:
        raise ValidationError(f"{path_desc} must be non-empty")
    if path[0] != "/":
        raise ValidationError(f"{path_desc} must be absolute")

def check_mode(mode: Optional[str], mode_desc: str) -> None:
    """
    Asserts that the given mode is None or an octal number.

    Raises
    ------
    ValidationError
        The mode is not octal.
    """
    if mode is None:
        return
    try:
        int(mode, 8)
    except ValueError:
        raise ValidationError(f"{mode_desc} is '{mode}' but must be octal") # pylint: disable=raise-missing-from
