"""Provides the dnf package provider."""

from typing import Optional

from keel.resources.utils import PackageProvider, package_provider
from keel.systems.system import System

def _installed_version(system: System, package: str) -> Optional[str]:
    """Returns the installed version-release of a package as reported by rpm."""
    ret = system.run(["rpm", "--query", "--queryformat", "%{VERSION}-%{RELEASE}", "--", package], check=False)
    if ret.returncode != 0:
        return None
    return ret.text() or None

def _latest_version(system: System, package: str) -> Optional[str]:
    """Returns the newest available version-release of a package."""
    ret = system.run(["dnf", "--quiet", "repoquery", "--latest-limit", "1",
                      "--queryformat", "%{version}-%{release}\n", "--", package], check=False)
    lines = ret.text().splitlines()
    if ret.returncode != 0 or len(lines) == 0:
        return None
    return lines[-1].strip()

def _install(system: System, package: str, version: Optional[str]) -> None:
    target = package if version is None else f"{package}-{version}"
    system.run(["dnf", "install", "--assumeyes", "--", target])

def _uninstall(system: System, package: str) -> None:
    system.run(["dnf", "remove", "--assumeyes", "--", package])

provider = package_provider(PackageProvider(
    name="dnf",
    command="dnf",
    installed_version=_installed_version,
    latest_version=_latest_version,
    install=_install,
    uninstall=_uninstall))
