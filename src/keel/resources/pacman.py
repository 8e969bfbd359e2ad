"""Provides the pacman package provider."""

from typing import Optional

from keel.resources.utils import PackageProvider, package_provider
from keel.systems.system import System
from keel.utils import ApplyError

def _installed_version(system: System, package: str) -> Optional[str]:
    """Returns the installed version of a package as reported by `pacman -Q`."""
    ret = system.run(["pacman", "-Q", "--", package], check=False)
    parts = ret.text().split()
    if ret.returncode != 0 or len(parts) < 2:
        return None
    return parts[1]

def _latest_version(system: System, package: str) -> Optional[str]:
    """Returns the version of a package in the sync database."""
    ret = system.run(["pacman", "-Si", "--", package], check=False)
    for line in ret.text().splitlines():
        key, _, value = line.partition(":")
        if key.strip() == "Version":
            return value.strip()
    return None

def _install(system: System, package: str, version: Optional[str]) -> None:
    if version is not None:
        raise ApplyError(f"pacman cannot install a specific version of '{package}' (requested {version})")
    system.run(["pacman", "--color", "never", "--noconfirm", "-S", "--", package])

def _uninstall(system: System, package: str) -> None:
    system.run(["pacman", "--color", "never", "--noconfirm", "-Rns", "--", package])

provider = package_provider(PackageProvider(
    name="pacman",
    command="pacman",
    installed_version=_installed_version,
    latest_version=_latest_version,
    install=_install,
    uninstall=_uninstall))
