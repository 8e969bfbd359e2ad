"""
The ssh module. Declares the desired state of an OpenSSH server: the package,
the rendered sshd_config, the service, managed users and groups, host keys
and the system wide known hosts file.

The catalog is a pure function of the parameters, the facts and the optional
user source. Nothing on the managed system is queried while compiling.
"""

from typing import Any, Optional

from keel import globals as G
from keel.catalog import Catalog, CatalogBuilder
from keel.hierarchy import Hierarchy, Layer, overlay
from keel.modules.ssh.params import PARAMETERS, Platform, defaults, platform_for, validate
from keel.modules.ssh.sources import UserSource
from keel.resources.api import Ref, Resource
from keel.resources.files import File
from keel.resources.package import Package
from keel.resources.service import Service
from keel.resources.ssh import Hostkey, KnownHosts, hostkey_path
from keel.resources.users import Group, User
from keel.utils import CompilationError, ValidationError

def allow_list(params: dict[str, Any], user_source: Optional[UserSource]) -> list[str]:
    """
    Derives the users allowed to log in, either from the external user source
    or from the statically configured users, never both.

    Parameters
    ----------
    params
        The validated parameters.
    user_source
        The external source of users, if any.

    Returns
    -------
    list[str]
        The allowed users. Empty if the allow list is not managed.

    Raises
    ------
    CompilationError
        Both the external source and static users are configured.
    ValidationError
        The derived list is empty.
    """
    if not params["manage_users_allow"]:
        return []

    if params["use_ldapuser"]:
        if len(params["users"]) > 0:
            raise CompilationError("can't use both ldapuser and static users")
        users = list(dict.fromkeys(user_source.users())) if user_source is not None else []
        origin = "the ldap user source"
    else:
        users = sorted(params["users"])
        origin = "the static users"

    if len(users) == 0:
        raise ValidationError(f"manage_users_allow is set, but {origin} yield no users")
    return users

def _format_value(value: Any) -> list[str]:
    """Formats an option value as the list of its sshd_config values."""
    if isinstance(value, bool):
        return ["yes" if value else "no"]
    if isinstance(value, (list, tuple)):
        return [v for x in value for v in _format_value(x)]
    return [str(value)]

def _format_options(options: dict[str, Any]) -> list[tuple[str, list[str]]]:
    return [(k, _format_value(options[k])) for k in sorted(options)]

def render_config(params: dict[str, Any], platform: Platform, allow_users: list[str]) -> str:
    """
    Renders the sshd_config for the given parameters.

    Parameters
    ----------
    params
        The validated parameters.
    platform
        The platform defaults.
    allow_users
        The derived allow list.

    Returns
    -------
    str
        The content of the configuration file.
    """
    options: dict[str, Any] = dict(platform.options)
    options["Subsystem"] = f"sftp {platform.sftp_server}"
    for k, v in params["options"].items():
        # None removes a platform default
        if v is None:
            options.pop(k, None)
        else:
            options[k] = v

    ports = _format_value(options.pop("Port", 22))
    match_blocks = [(k, _format_options({mk: mv for mk, mv in options.pop(k).items() if mv is not None}))
                    for k in sorted(options) if k.startswith("Match")]
    hostkeys = [hostkey_path(t) for t in params["hostkey_types"]] if params["manage_hostkey"] else []

    template = G.jinja2_env.get_template("sshd_config.j2")
    return template.render(
        hostkey_name=params["hostkey_name"],
        ports=ports,
        listen_address=params["listen_address"],
        permit_root_login=params["permit_root_login"],
        hostkeys=hostkeys,
        allow_users=allow_users,
        options=_format_options(options),
        match_blocks=match_blocks)

def _declare_groups(builder: CatalogBuilder, params: dict[str, Any]) -> list[Ref]:
    refs = []
    for name in sorted(params["groups"]):
        entry = params["groups"][name]
        group = builder.add(Group(name,
                                  ensure=entry.get("ensure", "present"),
                                  gid=entry.get("gid"),
                                  system=entry.get("system", False)))
        refs.append(group.ref)
    return refs

def _declare_users(builder: CatalogBuilder, params: dict[str, Any], groups: list[Ref]) -> None:
    for name in sorted(params["users"]):
        entry = overlay(params["users_default"], params["users"][name])
        ensure = entry.get("ensure", "present")
        home = entry.get("home") or f"/home/{name}"
        groups_attr = entry.get("groups")
        user = builder.add(User(name,
                                ensure=ensure,
                                uid=entry.get("uid"),
                                gid=entry.get("gid"),
                                groups=None if groups_attr is None else tuple(groups_attr),
                                home=home,
                                shell=entry.get("shell"),
                                comment=entry.get("comment"),
                                password=entry.get("password"),
                                require=groups))
        if ensure == "absent":
            continue

        primary_group = str(entry.get("gid") or name)
        last: Resource = user
        if entry.get("managehome", False):
            last = builder.add(File(home, ensure="directory", mode="750", owner=name, group=primary_group, require=[user]))

        keys = entry.get("ssh_keys")
        if keys:
            if isinstance(keys, str):
                keys = [keys]
            ssh_dir = builder.add(File(f"{home}/.ssh", ensure="directory", mode="700", owner=name, group=primary_group, require=[last]))
            builder.add(File(f"{home}/.ssh/authorized_keys",
                             content='\n'.join(keys) + '\n',
                             mode="600",
                             owner=name,
                             group=primary_group,
                             require=[ssh_dir]))

def compile_catalog(hierarchy: Hierarchy, facts: dict[str, Any], user_source: Optional[UserSource] = None) -> Catalog:
    """
    Compiles the catalog for a host.

    Parameters
    ----------
    hierarchy
        The parameter layers given by the caller, highest priority first.
        The module defaults are added as the lowest priority layer.
    facts
        The facts of the host, at least `os_family`.
    user_source
        The external source of users for the allow list, if any.

    Returns
    -------
    Catalog
        The compiled catalog.

    Raises
    ------
    CompilationError
        The parameters are invalid or conflicting, or the platform is unsupported.
    """
    platform = platform_for(facts.get("os_family"))
    hierarchy = hierarchy.with_layer(Layer("module defaults", defaults(facts, platform)), index=len(hierarchy.layers))
    params = validate(hierarchy.resolve(PARAMETERS))
    allow_users = allow_list(params, user_source)

    builder = CatalogBuilder(host=facts.get("fqdn") or params["hostkey_name"])
    present = params["ensure"] != "absent"

    package = builder.add(Package(params["package_name"], ensure=params["ensure"], provider=platform.package_provider))
    service_notify: list[Ref] = []
    if present:
        service_notify = [Ref("service", params["service_name"])]

    builder.add(File(params["config_path"],
                     ensure="file" if present else "absent",
                     content=render_config(params, platform, allow_users) if present else None,
                     mode="644" if present else None,
                     owner="root" if present else None,
                     group="root" if present else None,
                     require=[package],
                     notify=service_notify))

    if present:
        builder.add(Service(params["service_name"],
                            running=params["ensure_running"],
                            enable=params["ensure_enabled"],
                            has_status=True,
                            has_restart=True,
                            require=[package]))

    hostkeys: list[Ref] = []
    if present and params["manage_hostkey"]:
        for key_type in params["hostkey_types"]:
            hostkeys.append(builder.add(Hostkey(key_type, require=[package], notify=service_notify)).ref)

    if present and params["manage_known_hosts"]:
        builder.add(KnownHosts(params["known_hosts_path"],
                               mode="644",
                               owner="root",
                               group="root",
                               host_names=tuple(dict.fromkeys([params["hostkey_name"]] + params["hostaliases"])),
                               key_types=tuple(params["hostkey_types"]),
                               entries=tuple(params["known_hosts"]),
                               require=[package] + hostkeys))

    groups = _declare_groups(builder, params) if params["manage_groups"] else []
    if params["manage_users"]:
        _declare_users(builder, params, groups)

    return builder.compile(parameters=dict(params, allow_users=allow_users, platform=platform.name))
