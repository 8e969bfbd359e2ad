"""Provides the apt package provider."""

from typing import Optional

from keel.resources.utils import PackageProvider, package_provider
from keel.systems.system import System

def _installed_version(system: System, package: str) -> Optional[str]:
    """Returns the installed version of a package as reported by dpkg-query."""
    ret = system.run(["dpkg-query", "--show", "--showformat=${Status} ${Version}", "--", package], check=False)
    if ret.returncode != 0:
        return None
    status = ret.text()
    if "ok installed" not in status:
        return None
    return status.split()[-1]

def _latest_version(system: System, package: str) -> Optional[str]:
    """Returns the candidate version of a package as reported by apt-cache."""
    ret = system.run(["apt-cache", "policy", "--", package], check=False)
    for line in ret.text().splitlines():
        key, _, value = line.strip().partition(":")
        if key == "Candidate":
            value = value.strip()
            return None if value in ["", "(none)"] else value
    return None

def _install(system: System, package: str, version: Optional[str]) -> None:
    target = package if version is None else f"{package}={version}"
    system.run(["env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "install", "--yes", "--", target])

def _uninstall(system: System, package: str) -> None:
    system.run(["env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "remove", "--yes", "--", package])

provider = package_provider(PackageProvider(
    name="apt",
    command="apt-get",
    installed_version=_installed_version,
    latest_version=_latest_version,
    install=_install,
    uninstall=_uninstall))
