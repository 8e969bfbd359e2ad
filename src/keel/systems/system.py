"""
Defines the interface through which resources query and modify the managed system.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Any, Optional, Union

@dataclass
class CompletedCommand:
    """The return value of `System.run()`, representing a finished process."""
    stdout: Optional[bytes]
    stderr: Optional[bytes]
    returncode: int

    def text(self) -> str:
        """Returns stdout decoded as utf-8 and stripped of surrounding whitespace."""
        return (self.stdout or b"").decode("utf-8", errors="ignore").strip()

class StatResult:
    """
    The return value of stat(), representing information about a file.
    The type will be one of [ "dir", "chr", "blk", "file", "fifo", "link", "sock", "other" ].
    If requested, the sha512sum of the file will be included.
    """
    def __init__(self,
                 type: str, # pylint: disable=redefined-builtin
                 mode: Union[int, str],
                 owner: str,
                 group: str,
                 size: int,
                 mtime: int,
                 sha512sum: Optional[bytes],
                 uid: Optional[int] = None,
                 gid: Optional[int] = None):
        self.type = type
        self.mode: str = mode if isinstance(mode, str) else oct(mode)[2:]
        self.owner = owner
        self.group = group
        self.size = size
        self.mtime = mtime
        self.sha512sum = sha512sum
        self.uid = uid
        self.gid = gid

@dataclass
class UserEntry:
    """The result of a user query."""
    name: str
    """The name of the user"""
    uid: int
    """The numerical user id"""
    group: str
    """The name of the primary group"""
    gid: int
    """The numerical primary group id"""
    groups: list[str]
    """All names of the supplementary groups this user belongs to"""
    password_hash: Optional[str]
    """The password hash from shadow, if it could be read"""
    gecos: str
    """The comment (GECOS) field of the user"""
    home: str
    """The home directory of the user"""
    shell: str
    """The default shell of the user"""

@dataclass
class GroupEntry:
    """The result of a group query."""
    name: str
    """The name of the group"""
    gid: int
    """The numerical group id"""
    members: list[str]
    """All the group member's user names"""

os_families: dict[str, str] = {
    "debian": "Debian",
    "ubuntu": "Debian",
    "rhel": "RedHat",
    "fedora": "RedHat",
    "centos": "RedHat",
    "rocky": "RedHat",
    "almalinux": "RedHat",
    "arch": "Archlinux",
    "gentoo": "Gentoo",
}
"""Maps `ID` and `ID_LIKE` values from os-release to the os family fact."""

def parse_os_release(content: str) -> dict[str, str]:
    """
    Parses the key-value pairs of an os-release file.

    Parameters
    ----------
    content
        The content of the file.

    Returns
    -------
    dict[str, str]
        The unquoted values of all assignments.
    """
    values = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", maxsplit=1)
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value]
        values[key.strip()] = parts[0] if len(parts) > 0 else ""
    return values

class System:
    """
    The base class for managed systems. A system provides the primitive queries and
    modifications used by resources, and is the only way through which resources touch the host.
    """

    def run(self,
            command: list[str],
            input: Optional[bytes] = None, # pylint: disable=redefined-builtin
            check: bool = True) -> CompletedCommand:
        """
        Runs the given command, returning a CompletedCommand
        containing the captured output and the status code.

        Parameters
        ----------
        command
            The command to be executed.
        input
            Input to the command.
        check
            Whether to raise an exception if the command returns with a non-zero exit status.

        Returns
        -------
        CompletedCommand
            The result of the command.

        Raises
        ------
        subprocess.CalledProcessError
            If check is True and the process returned a non-zero exit status.
        keel.utils.ApplyError
            If the command could not be started or timed out.
        """
        _ = (self, command, input, check)
        raise NotImplementedError("Must be overwritten by subclass.")

    def stat(self, path: str, follow_links: bool = False, sha512sum: bool = False) -> Optional[StatResult]:
        """
        Runs stat() on the given path. Follows links if follow_links
        is true. Includes the sha512sum if desired and if the path is a file.

        Returns None if the path doesn't exist.

        Parameters
        ----------
        path
            The path to stat.
        follow_links
            Whether to follow symbolic links instead of running stat on the link.
        sha512sum
            Whether to include the sha512sum if the path is a file.

        Returns
        -------
        Optional[StatResult]
            The stat result or None if the path didn't exist.
        """
        _ = (self, path, follow_links, sha512sum)
        raise NotImplementedError("Must be overwritten by subclass.")

    def upload(self,
               file: str,
               content: bytes,
               mode: Optional[str] = None,
               owner: Optional[str] = None,
               group: Optional[str] = None) -> None:
        """
        Saves the given content under the given file path.

        Parameters
        ----------
        file
            The file where the content will be saved.
        content
            The file content.
        mode
            The mode for the file. Defaults to '600' if not given.
        owner
            The owner for the file. Defaults to root if not given.
        group
            The group for the file. If the owner is given, defaults to the primary
            group of the owner, otherwise defaults to root.
        """
        _ = (self, file, content, mode, owner, group)
        raise NotImplementedError("Must be overwritten by subclass.")

    def download(self, file: str) -> bytes:
        """
        Returns the content of the given file.

        Raises
        ------
        ValueError
            If the file was not found.
        """
        _ = (self, file)
        raise NotImplementedError("Must be overwritten by subclass.")

    def download_or(self, file: str, default: Optional[bytes] = None) -> Optional[bytes]:
        """Same as `download`, but returns the given default if the file doesn't exist."""
        try:
            return self.download(file)
        except ValueError:
            return default

    def query_user(self, user: str) -> Optional[UserEntry]:
        """
        Queries information about a user.

        Parameters
        ----------
        user
            The username or uid that should be queried.

        Returns
        -------
        Optional[UserEntry]
            The information about the user, or None if the user doesn't exist.
        """
        _ = (self, user)
        raise NotImplementedError("Must be overwritten by subclass.")

    def query_group(self, group: str) -> Optional[GroupEntry]:
        """
        Queries information about a group.

        Parameters
        ----------
        group
            The groupname or gid that should be queried.

        Returns
        -------
        Optional[GroupEntry]
            The information about the group, or None if the group doesn't exist.
        """
        _ = (self, group)
        raise NotImplementedError("Must be overwritten by subclass.")

    def has_command(self, command: str) -> bool:
        """Returns whether the given command is available on this system."""
        return self.run(["sh", "-c", f"command -v {shlex.quote(command)}"], check=False).returncode == 0

    def facts(self) -> dict[str, Any]:
        """
        Gathers the facts about this system which catalogs may depend on:
        `os_family`, `fqdn` and `hostname`. This only queries the system.

        Returns
        -------
        dict[str, Any]
            The gathered facts.
        """
        os_release = parse_os_release((self.download_or("/etc/os-release", b"") or b"").decode("utf-8", errors="ignore"))
        os_family = None
        for candidate in [os_release.get("ID", "")] + os_release.get("ID_LIKE", "").split():
            if candidate in os_families:
                os_family = os_families[candidate]
                break
        if os_family is None:
            os_family = os_release.get("ID", "unknown")

        fqdn = self.run(["hostname", "--fqdn"], check=False).text()
        if not fqdn:
            fqdn = self.run(["hostname"], check=False).text()
        hostname = fqdn.split(".", maxsplit=1)[0]
        return dict(os_family=os_family, fqdn=fqdn, hostname=hostname)

def find_command(system: System, command_to_result_map: dict[str, Any]) -> Optional[Any]:
    """
    Searches for any of the commands provided as keys in `command_to_result_map`,
    and if found on the system, returns the associated value from the map.
    """
    for command, result in command_to_result_map.items():
        if system.has_command(command):
            return result
    return None
