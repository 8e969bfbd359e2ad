import pytest

from keel.executor import Executor
from keel.hierarchy import Hierarchy, Layer
from keel.modules.ssh import allow_list, compile_catalog
from keel.modules.ssh.sources import StaticUserSource
from keel.report import ResourceState
from keel.resources.api import Ref
from keel.systems.system import GroupEntry
from keel.utils import CompilationError, ValidationError

DEBIAN = {"os_family": "Debian", "fqdn": "alpha.example.com", "hostname": "alpha"}

def site(**values):
    return Hierarchy([Layer("site", values, source="site.py")])

def compile_site(facts=None, user_source=None, **values):
    return compile_catalog(site(**values), facts or DEBIAN, user_source=user_source)

def test_allow_list_static_users():
    catalog = compile_site(manage_users_allow=True, users={"alice": {}})
    assert catalog.parameters["allow_users"] == ["alice"]
    assert "AllowUsers alice\n" in catalog[Ref("file", "/etc/ssh/sshd_config")].content

def test_allow_list_ldap_users():
    catalog = compile_site(user_source=StaticUserSource(["bob", "carol", "bob"]),
                           manage_users_allow=True, use_ldapuser=True)
    assert catalog.parameters["allow_users"] == ["bob", "carol"]
    assert "AllowUsers bob carol\n" in catalog[Ref("file", "/etc/ssh/sshd_config")].content

def test_allow_list_conflict():
    with pytest.raises(CompilationError, match="can't use both ldapuser and static users"):
        compile_site(user_source=StaticUserSource(["bob"]),
                     manage_users_allow=True, use_ldapuser=True, users={"alice": {}})

def test_allow_list_empty():
    with pytest.raises(ValidationError, match="yield no users"):
        compile_site(manage_users_allow=True)
    with pytest.raises(ValidationError, match="ldap user source yield no users"):
        compile_site(user_source=StaticUserSource([]), manage_users_allow=True, use_ldapuser=True)
    with pytest.raises(ValidationError, match="ldap user source yield no users"):
        compile_site(manage_users_allow=True, use_ldapuser=True)

def test_allow_list_unmanaged():
    params = {"manage_users_allow": False, "use_ldapuser": True, "users": {"alice": {}}}
    assert allow_list(params, StaticUserSource(["bob"])) == []
    catalog = compile_site(users={"alice": {}})
    assert "AllowUsers" not in catalog[Ref("file", "/etc/ssh/sshd_config")].content

@pytest.mark.parametrize("os_family, service, package, provider", [
    ("Debian", "ssh", "openssh-server", "apt"),
    ("RedHat", "sshd", "openssh-server", "dnf"),
    ("Archlinux", "sshd", "openssh", "pacman"),
    ("Gentoo", "sshd", "net-misc/openssh", "portage"),
])
def test_platforms(os_family, service, package, provider):
    catalog = compile_site(facts=dict(DEBIAN, os_family=os_family))
    assert catalog.parameters["service_name"] == service
    assert catalog.parameters["platform"] == os_family
    assert Ref("service", service) in catalog
    assert catalog[Ref("package", package)].provider == provider
    config = catalog[Ref("file", "/etc/ssh/sshd_config")]
    assert Ref("service", service) in config.notify

def test_unsupported_platform():
    with pytest.raises(CompilationError, match="unsupported platform 'Windows', supported are: Debian, RedHat, Archlinux, Gentoo"):
        compile_site(facts=dict(DEBIAN, os_family="Windows"))

def test_service_name_override():
    catalog = compile_site(service_name="openssh")
    assert Ref("service", "openssh") in catalog
    assert Ref("service", "ssh") not in catalog

def test_unknown_parameter():
    with pytest.raises(CompilationError, match=r"unknown parameter\(s\) in site: permit_rot_login") as e:
        compile_site(permit_rot_login="yes")
    assert e.value.loc == "site.py"

def test_missing_parameter():
    # Without a fqdn fact, the host key name has no default
    with pytest.raises(CompilationError, match=r"missing value for required parameter\(s\): hostkey_name"):
        compile_site(facts={"os_family": "Debian"})
    catalog = compile_site(facts={"os_family": "Debian"}, hostkey_name="alpha.example.com")
    assert catalog.host == "alpha.example.com"

def test_invalid_parameters():
    with pytest.raises(ValidationError, match="parameter 'manage_users' must be a boolean"):
        compile_site(manage_users="yes")
    with pytest.raises(ValidationError, match="parameter 'permit_root_login' must be one of"):
        compile_site(permit_root_login="maybe")
    with pytest.raises(ValidationError, match="unsupported type"):
        compile_site(hostkey_types=["dsa"])
    with pytest.raises(ValidationError, match="has unknown key"):
        compile_site(users={"alice": {"sheel": "/bin/zsh"}})

def test_determinism():
    values = dict(manage_users=True, manage_groups=True, manage_users_allow=True,
                  users={"bob": {"groups": ["sshusers"]}, "alice": {"uid": 1001}},
                  groups={"sshusers": {"gid": 2500}},
                  options={"X11Forwarding": False, "Match User bob": {"ForceCommand": "internal-sftp"}})
    first = compile_site(**values)
    second = compile_site(**values)
    assert first == second
    assert [r.ref for r in first] == [r.ref for r in second]

def test_dependency_order():
    catalog = compile_site(manage_users=True, manage_groups=True,
                           users={"alice": {"groups": ["sshusers"], "ssh_keys": "ssh-ed25519 AAAA alice"}},
                           groups={"sshusers": {}})
    order = [r.ref for r in catalog]
    package = order.index(Ref("package", "openssh-server"))
    config = order.index(Ref("file", "/etc/ssh/sshd_config"))
    service = order.index(Ref("service", "ssh"))
    group = order.index(Ref("group", "sshusers"))
    user = order.index(Ref("user", "alice"))
    home = order.index(Ref("file", "/home/alice"))
    keys = order.index(Ref("file", "/home/alice/.ssh/authorized_keys"))
    known_hosts = order.index(Ref("known_hosts", "/etc/ssh/ssh_known_hosts"))
    hostkeys = [order.index(Ref("hostkey", t)) for t in ["ed25519", "rsa"]]

    assert package < config < service
    assert group < user < home < keys
    assert all(package < k < known_hosts for k in hostkeys)
    assert all(k < service for k in hostkeys)

def test_users_default_overlay():
    catalog = compile_site(manage_users=True,
                           users_default={"shell": "/bin/zsh", "managehome": False},
                           users={"alice": {}, "bob": {"shell": "/bin/sh"}})
    assert catalog[Ref("user", "alice")].shell == "/bin/zsh"
    assert catalog[Ref("user", "bob")].shell == "/bin/sh"
    assert Ref("file", "/home/alice") not in catalog

def test_groups_unmanaged():
    catalog = compile_site(manage_users=True, groups={"sshusers": {}}, users={"alice": {}})
    assert Ref("group", "sshusers") not in catalog
    assert catalog[Ref("user", "alice")].require == ()

def test_ensure_absent():
    catalog = compile_site(ensure="absent")
    assert catalog[Ref("package", "openssh-server")].ensure == "absent"
    assert catalog[Ref("file", "/etc/ssh/sshd_config")].ensure == "absent"
    assert catalog.of_kind("service") == []
    assert catalog.of_kind("hostkey") == []
    assert catalog.of_kind("known_hosts") == []

def test_known_hosts_names():
    catalog = compile_site(hostaliases=["alpha", "alpha.internal"], known_hosts=["beta ssh-ed25519 AAAAbeta"])
    kh = catalog[Ref("known_hosts", "/etc/ssh/ssh_known_hosts")]
    assert kh.host_names == ("alpha.example.com", "alpha", "alpha.internal")
    assert kh.entries == ("beta ssh-ed25519 AAAAbeta",)
    assert set(kh.require) == {Ref("package", "openssh-server"), Ref("hostkey", "ed25519"), Ref("hostkey", "rsa")}

def test_converge(system):
    values = dict(manage_users=True, manage_groups=True, manage_users_allow=True,
                  users={"alice": {"uid": 1001, "groups": ["sshusers"], "ssh_keys": ["ssh-ed25519 AAAA alice"]}},
                  groups={"sshusers": {"gid": 2500}})
    catalog = compile_site(**values)
    report = Executor(catalog, system).run()
    assert report.exit_code == 0, [s.failure_message() for s in report if s.failed]
    assert system.packages == {"openssh-server": "1:9.2p1-2"}
    assert system.services["ssh"] == {"running": True, "enabled": True}
    assert b"AllowUsers alice\n" in system.files["/etc/ssh/sshd_config"].content
    assert system.users["alice"].groups == ["sshusers"]
    assert system.groups["sshusers"].gid == 2500
    assert system.files["/home/alice/.ssh/authorized_keys"].content == b"ssh-ed25519 AAAA alice\n"
    assert system.files["/home/alice/.ssh/authorized_keys"].owner == "alice"
    assert system.files["/home/alice/.ssh"].mode == "700"
    assert b"alpha.example.com,alpha ssh-ed25519 " in system.files["/etc/ssh/ssh_known_hosts"].content
    # The service was started in this run, so it is not restarted as well
    assert system.restarts == []

    # A second run changes nothing
    report = Executor(compile_site(**values), system).run()
    assert report.changed_count == 0
    assert all(s.state == ResourceState.NO_CHANGE for s in report)

    # A configuration change restarts the running service
    report = Executor(compile_site(**dict(values, options={"Port": 2222})), system).run()
    assert report[Ref("service", "ssh")].refreshed
    assert system.restarts == ["ssh"]
    assert b"Port 2222\n" in system.files["/etc/ssh/sshd_config"].content

def test_converge_failure_skips_dependents(system):
    system.failing.add("apt-get")
    report = Executor(compile_site(), system).run()
    assert report[Ref("package", "openssh-server")].state == ResourceState.FAILED
    assert report[Ref("file", "/etc/ssh/sshd_config")].state == ResourceState.FAILED_DEPENDENCY
    assert report[Ref("service", "ssh")].state == ResourceState.FAILED_DEPENDENCY
    assert report.exit_code == 1
    assert "/etc/ssh/sshd_config" not in system.files

def test_converge_timeout(system):
    system.timing_out.add("apt-get")
    report = Executor(compile_site(), system).run()
    package = report[Ref("package", "openssh-server")]
    assert package.state == ResourceState.FAILED
    assert package.operation == "apply"
    assert "timed out" in package.error
    assert report[Ref("file", "/etc/ssh/sshd_config")].state == ResourceState.FAILED_DEPENDENCY
    assert report[Ref("service", "ssh")].state == ResourceState.FAILED_DEPENDENCY
    assert report.exit_code == 1

def test_converge_numeric_gid(system):
    system.groups["users"] = GroupEntry(name="users", gid=100, members=[])
    values = dict(manage_users=True, users={"alice": {"gid": 100, "ssh_keys": "ssh-ed25519 AAAA alice"}})
    catalog = compile_site(**values)
    assert catalog[Ref("file", "/home/alice")].group == "100"

    report = Executor(catalog, system).run()
    assert report.exit_code == 0, [s.failure_message() for s in report if s.failed]
    assert system.users["alice"].group == "users"
    assert system.files["/home/alice"].group == "users"
    assert system.files["/home/alice/.ssh/authorized_keys"].group == "users"

    # The numeric group matches the group name reported for the files
    report = Executor(compile_site(**values), system).run()
    assert report.changed_count == 0
    assert system.executed("chown")[-1] == ["chown", "alice:100", "--", "/home/alice/.ssh"]
