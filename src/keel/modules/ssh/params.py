"""
Defines the parameters of the ssh module, their defaults per platform and their validation.
"""

from dataclasses import dataclass, field
from typing import Any

from keel.utils import CompilationError, ValidationError

@dataclass(frozen=True)
class Platform:
    """Platform specific defaults for an OS family."""
    name: str
    service_name: str
    package_name: str
    sftp_server: str
    package_provider: str
    options: dict[str, Any] = field(default_factory=dict)
    """Default sshd options, before the user's options are applied."""

platforms: dict[str, Platform] = {
    "Debian": Platform(name="Debian",
                       service_name="ssh",
                       package_name="openssh-server",
                       sftp_server="/usr/lib/openssh/sftp-server",
                       package_provider="apt",
                       options={"UsePAM": True, "KbdInteractiveAuthentication": False, "PrintMotd": False, "AcceptEnv": "LANG LC_*"}),
    "RedHat": Platform(name="RedHat",
                       service_name="sshd",
                       package_name="openssh-server",
                       sftp_server="/usr/libexec/openssh/sftp-server",
                       package_provider="dnf",
                       options={"UsePAM": True, "KbdInteractiveAuthentication": False, "SyslogFacility": "AUTHPRIV"}),
    "Archlinux": Platform(name="Archlinux",
                          service_name="sshd",
                          package_name="openssh",
                          sftp_server="/usr/lib/ssh/sftp-server",
                          package_provider="pacman",
                          options={"KbdInteractiveAuthentication": False}),
    "Gentoo": Platform(name="Gentoo",
                       service_name="sshd",
                       package_name="net-misc/openssh",
                       sftp_server="/usr/lib64/misc/sftp-server",
                       package_provider="portage",
                       options={"UsePAM": True, "KbdInteractiveAuthentication": False, "PrintMotd": False}),
}
"""All supported platforms by os family."""

PARAMETERS = [
    "ensure",
    "ensure_running",
    "ensure_enabled",
    "permit_root_login",
    "listen_address",
    "manage_known_hosts",
    "manage_users",
    "manage_users_allow",
    "manage_groups",
    "manage_hostkey",
    "hostkey_name",
    "hostaliases",
    "users",
    "users_default",
    "groups",
    "service_name",
    "options",
    "use_ldapuser",
    "package_name",
    "config_path",
    "known_hosts_path",
    "hostkey_types",
    "known_hosts",
]
"""All parameters recognized by the ssh module."""

USER_KEYS = ["ensure", "uid", "gid", "groups", "home", "shell", "comment", "password", "managehome", "ssh_keys"]
"""Recognized keys of entries in `users` and of `users_default`."""

GROUP_KEYS = ["ensure", "gid", "system"]
"""Recognized keys of entries in `groups`."""

PERMIT_ROOT_LOGIN = ["yes", "no", "prohibit-password", "without-password", "forced-commands-only"]
HOSTKEY_TYPES = ["rsa", "ecdsa", "ed25519"]

# Set through dedicated parameters, so they must not appear in options.
RESERVED_OPTIONS = {
    "ListenAddress": "listen_address",
    "PermitRootLogin": "permit_root_login",
    "HostKey": "manage_hostkey and hostkey_types",
    "AllowUsers": "manage_users_allow",
}

def platform_for(os_family: Any) -> Platform:
    """
    Returns the platform defaults for the given os family.

    Raises
    ------
    CompilationError
        The platform is not supported.
    """
    if os_family not in platforms:
        raise CompilationError(f"unsupported platform '{os_family}', supported are: {', '.join(platforms)}")
    return platforms[os_family]

def defaults(facts: dict[str, Any], platform: Platform) -> dict[str, Any]:
    """Returns the module defaults for a host with the given facts."""
    hostname = facts.get("hostname")
    return {
        "ensure": "present",
        "ensure_running": True,
        "ensure_enabled": True,
        "permit_root_login": "no",
        "listen_address": [],
        "manage_known_hosts": True,
        "manage_users": False,
        "manage_users_allow": False,
        "manage_groups": False,
        "manage_hostkey": True,
        "hostkey_name": facts.get("fqdn"),
        "hostaliases": [hostname] if hostname else [],
        "users": {},
        "users_default": {"ensure": "present", "managehome": True, "shell": "/bin/bash"},
        "groups": {},
        "service_name": platform.service_name,
        "options": {},
        "use_ldapuser": False,
        "package_name": platform.package_name,
        "config_path": "/etc/ssh/sshd_config",
        "known_hosts_path": "/etc/ssh/ssh_known_hosts",
        "hostkey_types": ["ed25519", "rsa"],
        "known_hosts": [],
    }

def _string_list(params: dict[str, Any], key: str) -> list[str]:
    value = params[key]
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"parameter '{key}' must be a string or a list of strings")
    return list(value)

def _check_entries(params: dict[str, Any], key: str, known: list[str]) -> dict[str, dict[str, Any]]:
    """Checks a dict of named entries, replacing empty entries by {}."""
    entries = {}
    for name, entry in params[key].items():
        if not isinstance(name, str) or not name:
            raise ValidationError(f"parameter '{key}' has an invalid name '{name}'")
        entry = entry or {}
        if not isinstance(entry, dict):
            raise ValidationError(f"entry '{name}' in parameter '{key}' must be a dict")
        unknown = sorted(set(entry) - set(known))
        if len(unknown) > 0:
            raise ValidationError(f"entry '{name}' in parameter '{key}' has unknown key(s): {', '.join(unknown)}")
        entries[name] = entry
    return entries

def validate(params: dict[str, Any]) -> dict[str, Any]:
    """
    Validates the resolved parameters and returns them in normalized form.

    Parameters
    ----------
    params
        The resolved parameters.

    Returns
    -------
    dict[str, Any]
        The normalized parameters. Lists are given as lists, `permit_root_login` as string.

    Raises
    ------
    ValidationError
        A parameter has an invalid value.
    """
    # pylint: disable=too-many-branches
    params = dict(params)
    for key in ["ensure_running", "ensure_enabled", "manage_known_hosts", "manage_users",
                "manage_users_allow", "manage_groups", "manage_hostkey", "use_ldapuser"]:
        if not isinstance(params[key], bool):
            raise ValidationError(f"parameter '{key}' must be a boolean, not '{params[key]}'")

    for key in ["ensure", "hostkey_name", "service_name", "package_name", "config_path", "known_hosts_path"]:
        if not isinstance(params[key], str) or not params[key]:
            raise ValidationError(f"parameter '{key}' must be a non-empty string")
    for key in ["config_path", "known_hosts_path"]:
        if not params[key].startswith("/"):
            raise ValidationError(f"parameter '{key}' must be an absolute path")

    prl = params["permit_root_login"]
    if isinstance(prl, bool):
        params["permit_root_login"] = "yes" if prl else "no"
    elif prl not in PERMIT_ROOT_LOGIN:
        raise ValidationError(f"parameter 'permit_root_login' must be one of {', '.join(PERMIT_ROOT_LOGIN)}, not '{prl}'")

    for key in ["listen_address", "hostaliases", "hostkey_types", "known_hosts"]:
        params[key] = _string_list(params, key)
    invalid = [t for t in params["hostkey_types"] if t not in HOSTKEY_TYPES]
    if len(invalid) > 0:
        raise ValidationError(f"parameter 'hostkey_types' contains unsupported type(s): {', '.join(invalid)}")

    for key in ["users", "users_default", "groups", "options"]:
        if not isinstance(params[key], dict):
            raise ValidationError(f"parameter '{key}' must be a dict")
    params["users"] = _check_entries(params, "users", USER_KEYS)
    params["groups"] = _check_entries(params, "groups", GROUP_KEYS)
    params["users_default"] = _check_entries({"users_default": {"default": params["users_default"]}}, "users_default", USER_KEYS)["default"]

    for key, value in params["options"].items():
        if key in RESERVED_OPTIONS:
            raise ValidationError(f"option '{key}' cannot be set in 'options', use parameter {RESERVED_OPTIONS[key]}")
        if key.startswith("Match") and value is not None and not isinstance(value, dict):
            raise ValidationError(f"option '{key}' must be a dict of options for the match block")
    return params
