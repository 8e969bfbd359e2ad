"""Provides the portage package provider."""

from typing import Optional

from keel.resources.utils import PackageProvider, package_provider
from keel.systems.system import System

def _strip_atom(package: str, atom: str) -> Optional[str]:
    """Extracts the version from a full atom such as `net-misc/openssh-9.6_p1-r3`."""
    if not atom.startswith(f"{package}-"):
        return None
    return atom[len(package) + 1:]

def _installed_version(system: System, package: str) -> Optional[str]:
    """Returns the installed version of a package as reported by portageq."""
    ret = system.run(["portageq", "best_version", "/", package], check=False)
    if ret.returncode != 0:
        return None
    return _strip_atom(package, ret.text())

def _latest_version(system: System, package: str) -> Optional[str]:
    """Returns the best visible version of a package."""
    ret = system.run(["portageq", "best_visible", "/", package], check=False)
    if ret.returncode != 0:
        return None
    return _strip_atom(package, ret.text())

def _install(system: System, package: str, version: Optional[str]) -> None:
    target = package if version is None else f"={package}-{version}"
    system.run(["emerge", "--color=n", "--verbose", "--", target])

def _uninstall(system: System, package: str) -> None:
    system.run(["emerge", "--color=n", "--verbose", "--depclean", "--", package])

provider = package_provider(PackageProvider(
    name="portage",
    command="emerge",
    installed_version=_installed_version,
    latest_version=_latest_version,
    install=_install,
    uninstall=_uninstall))
