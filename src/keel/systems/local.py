"""Provides access to the machine keel is running on."""

import errno as sys_errno
import hashlib
import os
import stat
import subprocess
from grp import getgrall, getgrgid, getgrnam
from pwd import getpwnam, getpwuid
from typing import Optional

from keel import logger
from keel.systems.system import CompletedCommand, GroupEntry, StatResult, System, UserEntry
from keel.utils import ApplyError

def _resolve_oct(value: str) -> int:
    """
    Resolves an octal string to a numeric value (e.g. for umask or mode).
    Raises a ValueError if the value is malformed.
    """
    try:
        return int(value, 8)
    except ValueError:
        raise ValueError(f"Invalid value '{value}': Must be in octal format.") # pylint: disable=raise-missing-from

def _resolve_user(user: str) -> tuple[int, int]:
    """
    Resolves the given user string to a uid and gid.
    The string may be either a username or a uid.
    Raises a ValueError if the user/uid does not exist.

    Returns
    -------
    tuple[int, int]
        A tuple (uid, gid) with the numeric ids of the user and its primary group
    """
    try:
        pw = getpwnam(user)
    except KeyError:
        try:
            uid = int(user)
        except ValueError:
            raise ValueError(f"The user with the name '{user}' does not exist.") # pylint: disable=raise-missing-from
        try:
            pw = getpwuid(uid)
        except KeyError:
            raise ValueError(f"The user with the uid '{uid}' does not exist.") # pylint: disable=raise-missing-from

    return (pw.pw_uid, pw.pw_gid)

def _resolve_group(group: str) -> int:
    """
    Resolves the given group string to a gid.
    The string may be either a groupname or a gid.
    Raises a ValueError if the group/gid does not exist.
    """
    try:
        gr = getgrnam(group)
    except KeyError:
        try:
            gid = int(group)
        except ValueError:
            raise ValueError(f"The group with the name '{group}' does not exist.") # pylint: disable=raise-missing-from
        try:
            gr = getgrgid(gid)
        except KeyError:
            raise ValueError(f"The group with the gid '{gid}' does not exist.") # pylint: disable=raise-missing-from

    return gr.gr_gid

def _shadow_hash(user: str) -> Optional[str]:
    """Returns the password hash of the given user from /etc/shadow, or None if it cannot be read."""
    try:
        with open("/etc/shadow", "r", encoding="utf-8") as f:
            for line in f:
                fields = line.rstrip("\n").split(":")
                if len(fields) > 1 and fields[0] == user:
                    return fields[1]
    except OSError:
        return None
    return None

class LocalSystem(System):
    """The local machine. Commands are run as subprocesses with a bounded runtime."""

    def __init__(self, command_timeout: Optional[float] = 300.0):
        self.command_timeout = command_timeout

    def run(self,
            command: list[str],
            input: Optional[bytes] = None, # pylint: disable=redefined-builtin
            check: bool = True) -> CompletedCommand:
        logger.debug_args("LocalSystem.run", locals())
        try:
            # A new session keeps a terminal interrupt from reaching the child,
            # so a cancelled run lets the current command finish.
            result = subprocess.run(command,
                input=input,
                capture_output=True,
                timeout=self.command_timeout,
                start_new_session=True,
                check=False)
        except subprocess.TimeoutExpired:
            raise ApplyError(f"command {command} timed out after {self.command_timeout} seconds") from None
        except OSError as e:
            raise ApplyError(f"command {command} could not be executed: {e.strerror}") from None

        if check and result.returncode != 0:
            raise subprocess.CalledProcessError(returncode=result.returncode,
                                                cmd=command,
                                                output=result.stdout,
                                                stderr=result.stderr)

        return CompletedCommand(stdout=result.stdout, stderr=result.stderr, returncode=result.returncode)

    def stat(self, path: str, follow_links: bool = False, sha512sum: bool = False) -> Optional[StatResult]:
        try:
            s = os.stat(path, follow_symlinks=follow_links)
        except OSError as e:
            if e.errno != sys_errno.ENOENT:
                raise
            return None

        ftype = "dir"  if stat.S_ISDIR(s.st_mode)  else \
                "chr"  if stat.S_ISCHR(s.st_mode)  else \
                "blk"  if stat.S_ISBLK(s.st_mode)  else \
                "file" if stat.S_ISREG(s.st_mode)  else \
                "fifo" if stat.S_ISFIFO(s.st_mode) else \
                "link" if stat.S_ISLNK(s.st_mode)  else \
                "sock" if stat.S_ISSOCK(s.st_mode) else \
                "other"

        try:
            owner = getpwuid(s.st_uid).pw_name
        except KeyError:
            owner = str(s.st_uid)

        try:
            group = getgrgid(s.st_gid).gr_name
        except KeyError:
            group = str(s.st_gid)

        digest: Optional[bytes] = None
        if sha512sum and ftype == "file":
            with open(path, 'rb') as f:
                digest = hashlib.sha512(f.read()).digest()

        return StatResult(
            type=ftype,
            mode=stat.S_IMODE(s.st_mode),
            owner=owner,
            group=group,
            size=s.st_size,
            mtime=s.st_mtime_ns,
            sha512sum=digest,
            uid=s.st_uid,
            gid=s.st_gid)

    def upload(self,
               file: str,
               content: bytes,
               mode: Optional[str] = None,
               owner: Optional[str] = None,
               group: Optional[str] = None) -> None:
        logger.debug_args("LocalSystem.upload", dict(file=file, mode=mode, owner=owner, group=group))
        uid, gid = (None, None)
        mode_oct = 0o600 if mode is None else _resolve_oct(mode)
        if owner is not None:
            (uid, gid) = _resolve_user(owner)
        if group is not None:
            gid = _resolve_group(group)

        with open(file, 'wb') as f:
            f.write(content)
        os.chmod(file, mode_oct)
        if uid is not None or gid is not None:
            os.chown(file, -1 if uid is None else uid, -1 if gid is None else gid)

    def download(self, file: str) -> bytes:
        try:
            with open(file, 'rb') as f:
                return f.read()
        except OSError as e:
            if e.errno != sys_errno.ENOENT:
                raise
            raise ValueError(f"The file '{file}' does not exist.") from None

    def query_user(self, user: str) -> Optional[UserEntry]:
        try:
            pw = getpwnam(user)
        except KeyError:
            try:
                pw = getpwuid(int(user))
            except (KeyError, ValueError):
                return None

        try:
            primary_group = getgrgid(pw.pw_gid).gr_name
        except KeyError:
            primary_group = str(pw.pw_gid)

        return UserEntry(
            name=pw.pw_name,
            uid=pw.pw_uid,
            group=primary_group,
            gid=pw.pw_gid,
            groups=sorted(g.gr_name for g in getgrall() if pw.pw_name in g.gr_mem),
            password_hash=_shadow_hash(pw.pw_name),
            gecos=pw.pw_gecos,
            home=pw.pw_dir,
            shell=pw.pw_shell)

    def query_group(self, group: str) -> Optional[GroupEntry]:
        try:
            gr = getgrnam(group)
        except KeyError:
            try:
                gr = getgrgid(int(group))
            except (KeyError, ValueError):
                return None

        return GroupEntry(name=gr.gr_name, gid=gr.gr_gid, members=list(gr.gr_mem))
