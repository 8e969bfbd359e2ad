"""Provides resources for ssh host keys and the system wide known hosts file."""

from dataclasses import dataclass
from typing import Optional

from keel.resources.api import Delta, Resource, resource
from keel.resources.files import File
from keel.systems.system import System
from keel.utils import ApplyError, ValidationError

hostkey_types = ["rsa", "ecdsa", "ed25519"]
"""Host key types that can be generated."""

def hostkey_path(key_type: str, keys_dir: str = "/etc/ssh") -> str:
    """Returns the path of the private host key of the given type."""
    return f"{keys_dir}/ssh_host_{key_type}_key"

@resource("hostkey")
@dataclass(frozen=True)
class Hostkey(Resource):
    """
    Generates an ssh host key pair with ssh-keygen if it is missing. The title is the key type.
    Existing keys are never replaced.
    """

    keys_dir: str = "/etc/ssh"

    @property
    def path(self) -> str:
        """The path of the private key."""
        return hostkey_path(self.title, self.keys_dir)

    def validate(self) -> None:
        if self.title not in hostkey_types:
            raise ValidationError(f"{self.ref}: unsupported host key type, must be one of {hostkey_types}")

    def lock_keys(self) -> frozenset[str]:
        return frozenset([f"path:{self.path}"])

    def examine(self, system: System, delta: Delta) -> None:
        private = system.stat(self.path, follow_links=True)
        public = system.stat(f"{self.path}.pub", follow_links=True)
        for stat, path in [(private, self.path), (public, f"{self.path}.pub")]:
            if stat is not None and stat.type != "file":
                raise ApplyError(f"path '{path}' exists but is not a file!")

        delta.initial_state(private_key=private is not None, public_key=public is not None)
        delta.final_state(private_key=True, public_key=True)

    def apply(self, system: System, delta: Delta) -> None:
        if delta.changed("private_key"):
            # ssh-keygen asks before overwriting a stale public key
            system.run(["rm", "-f", "--", f"{self.path}.pub"])
            system.run(["ssh-keygen", "-q", "-N", "", "-t", self.title, "-f", self.path])
        else:
            public = system.run(["ssh-keygen", "-y", "-f", self.path]).stdout or b""
            system.upload(f"{self.path}.pub", public, mode="644", owner="root", group="root")

@resource("known_hosts")
@dataclass(frozen=True)
class KnownHosts(File):
    """
    The system wide known hosts file. The title is its path.

    The content is built when the resource is examined, from the public host keys of
    this system (announced under `host_names`) followed by the static `entries`.
    """

    host_names: tuple[str, ...] = ()
    """The names under which this host's keys are announced."""
    key_types: tuple[str, ...] = ()
    """The host key types to announce."""
    entries: tuple[str, ...] = ()
    """Additional known hosts lines."""
    keys_dir: str = "/etc/ssh"

    def validate(self) -> None:
        if self.ensure not in ["file", "absent"]:
            raise ValidationError(f"{self.ref}: ensure must be 'file' or 'absent', not '{self.ensure}'")
        if self.content is not None:
            raise ValidationError(f"{self.ref}: the content of a known hosts file cannot be given directly")
        for attr in ["host_names", "key_types", "entries"]:
            value = getattr(self, attr)
            if isinstance(value, str):
                value = (value,)
            object.__setattr__(self, attr, tuple(value))
        if self.key_types and not self.host_names:
            raise ValidationError(f"{self.ref}: host keys can only be announced with at least one host name")
        super().validate()

    def desired_content(self, system: System) -> Optional[bytes]:
        names = ','.join(self.host_names)
        lines = ["# Managed by keel. Manual changes will be overwritten."]
        for key_type in self.key_types:
            public = system.download_or(f"{hostkey_path(key_type, self.keys_dir)}.pub")
            if public is None:
                continue
            fields = public.decode("utf-8", errors="ignore").split()
            if len(fields) < 2:
                raise ApplyError(f"malformed public host key of type '{key_type}'")
            lines.append(f"{names} {fields[0]} {fields[1]}")
        lines.extend(self.entries)
        return ('\n'.join(lines) + '\n').encode("utf-8")
