"""
Provides read-only sources of user names, used to derive the list of users
allowed to log in.
"""

import base64
import binascii
from typing import Iterable

from keel.utils import CompilationError

class UserSource:
    """The interface of an external source of user names."""

    def users(self) -> list[str]:
        """
        Returns the user names provided by this source, in the order of the source.

        Raises
        ------
        CompilationError
            The source could not be read.
        """
        raise NotImplementedError("Must be overwritten by subclass.")

class StaticUserSource(UserSource):
    """A source providing a fixed list of users."""

    def __init__(self, names: Iterable[str]):
        self.names = list(names)

    def users(self) -> list[str]:
        return list(self.names)

def _unfold(lines: Iterable[str]) -> list[str]:
    """Joins LDIF continuation lines (lines starting with a single space) with their predecessor."""
    result: list[str] = []
    for line in lines:
        if line.startswith(" ") and len(result) > 0:
            result[-1] += line[1:]
        else:
            result.append(line)
    return result

def parse_ldif_uids(content: str, source: str = "<ldif>") -> list[str]:
    """
    Extracts the values of all `uid` attributes from LDIF content.

    Parameters
    ----------
    content
        The LDIF text.
    source
        The name of the source for error messages.

    Returns
    -------
    list[str]
        The uids in order of appearance.
    """
    uids = []
    for lineno, line in enumerate(_unfold(content.splitlines()), start=1):
        if line.startswith("#") or ":" not in line:
            continue
        attr, value = line.split(":", maxsplit=1)
        if attr.strip().lower() != "uid":
            continue
        if value.startswith(":"):
            try:
                value = base64.b64decode(value[1:].strip(), validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                raise CompilationError(f"invalid base64 value for uid (entry line {lineno})", loc=source) from None
        value = value.strip()
        if value:
            uids.append(value)
    return uids

class LdapExportSource(UserSource):
    """
    Reads user names from an LDIF export of a directory (as produced by `ldapsearch -LLL`).
    Every `uid` attribute is taken as a user name.
    """

    def __init__(self, path: str):
        self.path = path

    def users(self) -> list[str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            raise CompilationError(f"could not read ldap export: {e.strerror}", loc=self.path) from None
        return parse_ldif_uids(content, source=self.path)
