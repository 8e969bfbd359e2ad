"""Provides the user and group resources, which manage the local account databases."""

from dataclasses import dataclass
from typing import Optional

from keel.resources.api import Delta, Resource, resource
from keel.systems.system import System
from keel.utils import ValidationError

def _check_ensure(res: Resource, ensure: str) -> None:
    if ensure not in ["present", "absent"]:
        raise ValidationError(f"{res.ref}: ensure must be 'present' or 'absent', not '{ensure}'")

def _check_id(res: Resource, attr: str) -> None:
    """Converts a numeric id attribute to int in place."""
    value = getattr(res, attr)
    if value is None:
        return
    try:
        object.__setattr__(res, attr, int(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{res.ref}: {attr} must be numeric, not '{value}'") # pylint: disable=raise-missing-from

@resource("user")
@dataclass(frozen=True)
class User(Resource):
    """
    Creates, modifies or deletes a unix user. The title is the user name.
    Attributes left at None are kept as they are on existing users, and use the
    system defaults when a user is created. The home directory itself is not created.
    """

    ensure: str = "present"
    uid: Optional[int] = None
    gid: Optional[str] = None
    """The primary group (name or gid). Must already exist."""
    groups: Optional[tuple[str, ...]] = None
    """The exact list of supplementary groups."""
    home: Optional[str] = None
    shell: Optional[str] = None
    comment: Optional[str] = None
    password: Optional[str] = None
    """The password hash as given by `crypt(3)`."""
    system: bool = False
    """Create the user as a system user. Does not affect existing users."""

    def validate(self) -> None:
        if not self.title:
            raise ValidationError(f"{self.ref}: user name must be non-empty")
        _check_ensure(self, self.ensure)
        _check_id(self, "uid")
        if self.gid is not None:
            object.__setattr__(self, "gid", str(self.gid))
        if self.groups is not None:
            if isinstance(self.groups, str) or not all(isinstance(g, str) for g in self.groups):
                raise ValidationError(f"{self.ref}: groups must be a list of group names")
            object.__setattr__(self, "groups", tuple(sorted(set(self.groups))))

    def lock_keys(self) -> frozenset[str]:
        return frozenset(["passwd"])

    def examine(self, system: System, delta: Delta) -> None:
        current = system.query_user(self.title)
        if current is None:
            delta.initial_state(exists=False, uid=None, gid=None, groups=None, comment=None, home=None, shell=None, password=None)
        else:
            # A numeric primary group is compared by gid
            primary = str(current.gid) if self.gid is not None and self.gid.isdigit() else current.group
            delta.initial_state(exists=True, uid=current.uid, gid=primary, groups=sorted(current.groups),
                                comment=current.gecos, home=current.home, shell=current.shell, password=current.password_hash)

        if self.ensure == "absent":
            delta.final_state(exists=False)
        else:
            delta.final_state(exists=True, uid=self.uid, gid=self.gid,
                              groups=None if self.groups is None else list(self.groups),
                              comment=self.comment, home=self.home, shell=self.shell, password=self.password)

    def apply(self, system: System, delta: Delta) -> None:
        # pylint: disable=too-many-branches
        if self.ensure == "absent":
            system.run(["userdel", "--", self.title])
            return

        if delta.changed("exists"):
            create_command = ["useradd"]
            if self.system:
                create_command.append("--system")
            if self.uid is not None:
                create_command.extend(["--uid", str(self.uid)])

            # Primary group
            if self.gid is None:
                create_command.append("--user-group")
            else:
                create_command.extend(["--no-user-group", "--gid", self.gid])

            if self.groups:
                create_command.extend(["--groups", ','.join(self.groups)])
            if self.comment is not None:
                create_command.extend(["--comment", self.comment])
            create_command.append("--no-create-home")
            if self.home is not None:
                create_command.extend(["--home-dir", self.home])
            if self.shell is not None:
                create_command.extend(["--shell", self.shell])
            if self.password:
                create_command.extend(["--password", self.password])

            system.run(create_command + ["--", self.title])
            return

        # User exists but some properties differ
        if delta.changed("uid"):
            system.run(["usermod", "--uid", str(self.uid), "--", self.title])
        if delta.changed("gid"):
            system.run(["usermod", "--gid", str(self.gid), "--", self.title])
        if delta.changed("groups"):
            # An empty argument removes all supplementary groups
            system.run(["usermod", "--groups", ','.join(self.groups or ()), "--", self.title])
        if delta.changed("comment"):
            system.run(["usermod", "--comment", str(self.comment), "--", self.title])
        if delta.changed("home"):
            system.run(["usermod", "--home", str(self.home), "--", self.title])
        if delta.changed("shell"):
            system.run(["usermod", "--shell", str(self.shell), "--", self.title])
        if delta.changed("password"):
            system.run(["usermod", "--password", str(self.password), "--", self.title])

@resource("group")
@dataclass(frozen=True)
class Group(Resource):
    """Creates, modifies or deletes a unix group. The title is the group name."""

    ensure: str = "present"
    gid: Optional[int] = None
    system: bool = False
    """Create the group as a system group. Does not affect existing groups."""

    def validate(self) -> None:
        if not self.title:
            raise ValidationError(f"{self.ref}: group name must be non-empty")
        _check_ensure(self, self.ensure)
        _check_id(self, "gid")

    def lock_keys(self) -> frozenset[str]:
        return frozenset(["passwd"])

    def examine(self, system: System, delta: Delta) -> None:
        current = system.query_group(self.title)
        if current is None:
            delta.initial_state(exists=False, gid=None)
        else:
            delta.initial_state(exists=True, gid=current.gid)

        if self.ensure == "absent":
            delta.final_state(exists=False)
        else:
            delta.final_state(exists=True, gid=self.gid)

    def apply(self, system: System, delta: Delta) -> None:
        if self.ensure == "absent":
            system.run(["groupdel", "--", self.title])
        elif delta.changed("exists"):
            create_command = ["groupadd"]
            if self.system:
                create_command.append("--system")
            if self.gid is not None:
                create_command.extend(["--gid", str(self.gid)])
            system.run(create_command + ["--", self.title])
        elif delta.changed("gid"):
            system.run(["groupmod", "--gid", str(self.gid), "--", self.title])
