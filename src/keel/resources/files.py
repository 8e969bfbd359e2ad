"""Provides the file resource, which manages files and directories."""

import hashlib
from dataclasses import dataclass
from typing import Optional

from keel.resources.api import Delta, Resource, resource
from keel.resources.utils import check_absolute_path, check_mode
from keel.systems.system import System
from keel.utils import ApplyError, ValidationError, canonicalize_mode

def _by_id(wanted: Optional[str], name: str, numeric_id: Optional[int]) -> str:
    """Returns the current owner or group in the form it was declared in."""
    if wanted is not None and wanted.isdigit() and numeric_id is not None:
        return str(numeric_id)
    return name

@resource("file")
@dataclass(frozen=True)
class File(Resource):
    """
    Creates, deletes or updates a file or directory. The title is the absolute path.

    Attributes set to None are not managed: an existing file keeps its mode and
    ownership, and a file without content keeps whatever content it has.
    """

    ensure: str = "file"
    """One of `file`, `directory` or `absent`."""
    content: Optional[str] = None
    """The content of the file. Only valid for files."""
    mode: Optional[str] = None
    """The octal mode."""
    owner: Optional[str] = None
    """The owning user."""
    group: Optional[str] = None
    """The owning group."""

    @property
    def path(self) -> str:
        """The path of the managed file."""
        return self.title

    def validate(self) -> None:
        check_absolute_path(self.title, f"path of {self.ref}")
        if self.ensure not in ["file", "directory", "absent"]:
            raise ValidationError(f"{self.ref}: ensure must be one of 'file', 'directory' or 'absent', not '{self.ensure}'")
        if self.ensure != "file" and self.content is not None:
            raise ValidationError(f"{self.ref}: content can only be given when ensure is 'file'")
        check_mode(self.mode, f"{self.ref}: mode")
        object.__setattr__(self, "mode", canonicalize_mode(self.mode))

    def lock_keys(self) -> frozenset[str]:
        return frozenset([f"path:{self.path}"])

    def desired_content(self, system: System) -> Optional[bytes]:
        """
        Returns the desired content of the file, or None if the content is not managed.

        Parameters
        ----------
        system
            The managed system.
        """
        _ = (system)
        return None if self.content is None else self.content.encode("utf-8")

    def examine(self, system: System, delta: Delta) -> None:
        # pylint: disable=too-many-branches
        content = self.desired_content(system) if self.ensure == "file" else None
        delta.context["content"] = content
        digest = None if content is None else hashlib.sha512(content).digest()

        if self.ensure == "absent":
            delta.final_state(exists=False)
        elif self.ensure == "directory":
            delta.final_state(exists=True, mode=self.mode, owner=self.owner, group=self.group)
        else:
            delta.final_state(exists=True, mode=self.mode, owner=self.owner, group=self.group, sha512=digest)

        # Examine current state
        stat = system.stat(self.path, sha512sum=content is not None)
        if stat is None:
            delta.initial_state(exists=False, type=None, mode=None, owner=None, group=None, sha512=None)
            if content is not None:
                delta.diff(self.path, None, content)
            return

        if self.ensure == "file" and stat.type != "file":
            raise ApplyError(f"path '{self.path}' exists but is not a file!")
        if self.ensure == "directory" and stat.type != "dir":
            raise ApplyError(f"path '{self.path}' exists but is not a directory!")

        # Numeric owners and groups are compared by id, stat reports names
        owner = _by_id(self.owner, stat.owner, stat.uid)
        group = _by_id(self.group, stat.group, stat.gid)
        delta.initial_state(exists=True, type=stat.type, mode=stat.mode, owner=owner, group=group, sha512=stat.sha512sum)
        if content is not None and delta.changed("sha512"):
            delta.diff(self.path, system.download_or(self.path), content)
        elif self.ensure == "absent" and stat.type == "file":
            delta.diff(self.path, system.download_or(self.path), None)

    def apply(self, system: System, delta: Delta) -> None:
        assert delta.initial_state_dict is not None
        initial = delta.initial_state_dict

        if self.ensure == "absent":
            if initial["type"] == "dir":
                system.run(["rm", "-rf", "--", self.path])
            else:
                system.run(["rm", "-f", "--", self.path])
            return

        if self.ensure == "directory":
            if delta.changed("exists"):
                system.run(["mkdir", "--", self.path])
        elif delta.changed("exists") or delta.changed("sha512"):
            # Unmanaged attributes of an existing file are kept as they are.
            system.upload(file=self.path,
                          content=delta.context["content"] or b"",
                          mode=self.mode or initial["mode"] or "644",
                          owner=self.owner or initial["owner"],
                          group=self.group or initial["group"])
            return

        # Set correct mode, if needed
        if delta.changed("mode"):
            system.run(["chmod", str(self.mode), "--", self.path])

        # Set correct owner and group, if needed
        if delta.changed("owner") or delta.changed("group"):
            owner = self.owner or ""
            group = f":{self.group}" if self.group else ""
            system.run(["chown", f"{owner}{group}", "--", self.path])
