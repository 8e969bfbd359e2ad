import pytest

from keel.resources.api import Delta, Ref
from keel.resources.files import File
from keel.resources.package import Package
from keel.resources.service import Service
from keel.resources.ssh import Hostkey, KnownHosts
from keel.resources.users import Group, User
from keel.utils import ApplyError, ValidationError
from keel.systems.system import GroupEntry
from fakes import FakeFile

def converge(res, system, dry=False):
    """Examines and applies a resource, returning the delta."""
    delta = Delta()
    res.examine(system, delta)
    if not delta.unchanged() and not dry:
        res.apply(system, delta)
    return delta

def assert_idempotent(res, system):
    delta = Delta()
    res.examine(system, delta)
    assert delta.changes() == []

def test_ref_str():
    assert str(Ref("known_hosts", "/etc/ssh/ssh_known_hosts")) == "KnownHosts[/etc/ssh/ssh_known_hosts]"
    assert str(File("/tmp/x")) == "File[/tmp/x]"

def test_resources_are_immutable():
    f = File("/tmp/x", content="a")
    with pytest.raises(AttributeError):
        f.content = "b" # type: ignore[misc]

def test_file_validation():
    with pytest.raises(ValidationError, match="must be absolute"):
        File("relative/path")
    with pytest.raises(ValidationError, match="ensure must be one of"):
        File("/tmp/x", ensure="link")
    with pytest.raises(ValidationError, match="content can only be given"):
        File("/tmp/x", ensure="directory", content="a")
    with pytest.raises(ValidationError, match="must be octal"):
        File("/tmp/x", mode="rw-r--r--")
    assert File("/tmp/x", mode="0644").mode == "644"
    assert File("/tmp/x", mode="0644") == File("/tmp/x", mode="644")

def test_file_create_and_update(system):
    f = File("/etc/ssh/sshd_config", content="Port 22\n", mode="644", owner="root", group="root")
    delta = converge(f, system)
    assert delta.changed("exists")
    assert delta.diffs == [("/etc/ssh/sshd_config", None, b"Port 22\n")]
    assert system.files["/etc/ssh/sshd_config"].content == b"Port 22\n"
    assert system.files["/etc/ssh/sshd_config"].mode == "644"
    assert_idempotent(f, system)

    f2 = File("/etc/ssh/sshd_config", content="Port 2222\n", mode="644", owner="root", group="root")
    delta = converge(f2, system)
    assert [c.key for c in delta.changes()] == ["sha512"]
    assert delta.diffs == [("/etc/ssh/sshd_config", b"Port 22\n", b"Port 2222\n")]
    assert system.files["/etc/ssh/sshd_config"].content == b"Port 2222\n"

def test_file_attributes_only(system):
    system.files["/etc/motd"] = FakeFile("file", b"hello\n", mode="600", owner="nobody", group="nogroup")
    f = File("/etc/motd", content="hello\n", mode="644", owner="root")
    delta = converge(f, system)
    assert sorted(c.key for c in delta.changes()) == ["mode", "owner"]
    assert system.executed("chmod") == [["chmod", "644", "--", "/etc/motd"]]
    assert system.executed("chown") == [["chown", "root", "--", "/etc/motd"]]
    assert system.files["/etc/motd"].group == "nogroup"
    assert_idempotent(f, system)

def test_file_unmanaged_content(system):
    system.files["/etc/motd"] = FakeFile("file", b"hello\n", mode="600")
    f = File("/etc/motd", mode="600")
    assert converge(f, system).unchanged()

def test_file_not_a_file(system):
    with pytest.raises(ApplyError, match="exists but is not a file"):
        converge(File("/etc/ssh", content="x"), system)

def test_directory(system):
    d = File("/home/alice", ensure="directory", mode="750", owner="root", group="root")
    converge(d, system)
    assert system.files["/home/alice"].type == "dir"
    assert system.files["/home/alice"].mode == "750"
    assert_idempotent(d, system)

def test_absent(system):
    system.files["/etc/ssh/sshd_config"] = FakeFile("file", b"Port 22\n")
    f = File("/etc/ssh/sshd_config", ensure="absent")
    delta = converge(f, system)
    assert delta.diffs == [("/etc/ssh/sshd_config", b"Port 22\n", None)]
    assert "/etc/ssh/sshd_config" not in system.files
    assert_idempotent(f, system)

def test_package(system):
    p = Package("openssh-server")
    delta = converge(p, system)
    assert delta.changed("installed")
    assert system.packages == {"openssh-server": "1:9.2p1-2"}
    assert_idempotent(p, system)

    absent = Package("openssh-server", ensure="absent")
    converge(absent, system)
    assert system.packages == {}
    assert_idempotent(absent, system)

def test_package_latest_and_version(system):
    system.packages["openssh-server"] = "1:9.0"
    latest = Package("openssh-server", ensure="latest", provider="apt")
    delta = converge(latest, system)
    assert [(c.key, c.prior, c.new) for c in delta.changes()] == [("version", "1:9.0", "1:9.2p1-2")]
    assert system.packages["openssh-server"] == "1:9.2p1-2"
    assert_idempotent(latest, system)

    pinned = Package("openssh-server", ensure="1:9.1")
    converge(pinned, system)
    assert system.executed("apt-get")[-1][-1] == "openssh-server=1:9.1"
    assert_idempotent(pinned, system)

def test_package_unknown_provider(system):
    with pytest.raises(ApplyError, match="Unknown package provider 'zypper'"):
        converge(Package("openssh", provider="zypper"), system)
    system.available_commands = set()
    with pytest.raises(ApplyError, match="No supported package manager"):
        converge(Package("openssh"), system)

def test_service(system):
    s = Service("ssh", running=True, enable=True)
    converge(s, system)
    assert system.services["ssh"] == {"running": True, "enabled": True}
    assert_idempotent(s, system)

    stopped = Service("ssh", running=False)
    converge(stopped, system)
    assert system.services["ssh"] == {"running": False, "enabled": True}

def test_service_refresh(system):
    system.services["ssh"] = {"running": True, "enabled": True}
    s = Service("ssh", running=True)
    delta = converge(s, system)
    assert s.refresh(system, delta, dry=False)
    assert system.restarts == ["ssh"]

    # Without restart support the service is stopped and started
    no_restart = Service("ssh", running=True, has_restart=False)
    delta = converge(no_restart, system)
    assert no_restart.refresh(system, delta, dry=False)
    assert system.restarts == ["ssh"]
    assert [c[1] for c in system.executed("systemctl") if c[1] != "show"][-2:] == ["stop", "start"]

    # Dry refreshes report but don't restart
    delta = converge(s, system)
    assert s.refresh(system, delta, dry=True)
    assert system.restarts == ["ssh"]

def test_service_refresh_skipped(system):
    # Just started: no restart needed
    s = Service("ssh", running=True)
    delta = converge(s, system)
    assert not s.refresh(system, delta, dry=False)

    # Not supposed to run
    stopped = Service("ssh", running=False)
    delta = converge(stopped, system)
    assert not stopped.refresh(system, delta, dry=False)
    assert system.restarts == []

def test_service_without_status(system):
    system.services["ssh"] = {"running": True, "enabled": False}
    s = Service("ssh", running=True, has_status=False)
    assert converge(s, system).unchanged()
    assert system.executed("pgrep") == [["pgrep", "--exact", "--", "ssh"]]

def test_group(system):
    g = Group("sshusers", gid=2500)
    converge(g, system)
    assert system.groups["sshusers"].gid == 2500
    assert_idempotent(g, system)

    converge(Group("sshusers", gid=2501), system)
    assert system.executed("groupmod") == [["groupmod", "--gid", "2501", "--", "sshusers"]]

    converge(Group("sshusers", ensure="absent"), system)
    assert "sshusers" not in system.groups

def test_group_validation():
    with pytest.raises(ValidationError, match="gid must be numeric"):
        Group("g", gid="abc") # type: ignore[arg-type]
    with pytest.raises(ValidationError, match="ensure must be 'present' or 'absent'"):
        Group("g", ensure="latest")

def test_user(system):
    system.groups["sshusers"] = GroupEntry(name="sshusers", gid=2500, members=[])
    u = User("alice", uid=1001, groups=["sshusers"], home="/home/alice", shell="/bin/bash", comment="Alice")
    converge(u, system)
    alice = system.users["alice"]
    assert (alice.uid, alice.groups, alice.home, alice.shell, alice.gecos) == (1001, ["sshusers"], "/home/alice", "/bin/bash", "Alice")
    assert "--no-create-home" in system.executed("useradd")[0]
    assert_idempotent(u, system)

    changed = User("alice", uid=1001, groups=[], home="/home/alice", shell="/bin/zsh", comment="Alice")
    delta = converge(changed, system)
    assert sorted(c.key for c in delta.changes()) == ["groups", "shell"]
    assert system.users["alice"].groups == []
    assert system.users["alice"].shell == "/bin/zsh"
    assert_idempotent(changed, system)

    converge(User("alice", ensure="absent"), system)
    assert "alice" not in system.users

def test_user_validation():
    assert User("alice", uid="1001").uid == 1001 # type: ignore[arg-type]
    assert User("alice", groups=["b", "a", "a"]).groups == ("a", "b")
    with pytest.raises(ValidationError, match="groups must be a list"):
        User("alice", groups="wheel") # type: ignore[arg-type]

def test_hostkey(system):
    k = Hostkey("ed25519")
    converge(k, system)
    assert "/etc/ssh/ssh_host_ed25519_key" in system.files
    assert system.files["/etc/ssh/ssh_host_ed25519_key.pub"].content.startswith(b"ssh-ed25519 ")
    assert_idempotent(k, system)

    # Existing private keys are never replaced, only the public key is restored
    del system.files["/etc/ssh/ssh_host_ed25519_key.pub"]
    private = system.files["/etc/ssh/ssh_host_ed25519_key"].content
    converge(k, system)
    assert system.files["/etc/ssh/ssh_host_ed25519_key"].content == private
    assert "/etc/ssh/ssh_host_ed25519_key.pub" in system.files

def test_hostkey_validation():
    with pytest.raises(ValidationError, match="unsupported host key type"):
        Hostkey("dsa")

def test_known_hosts(system):
    converge(Hostkey("ed25519"), system)
    converge(Hostkey("rsa"), system)
    kh = KnownHosts("/etc/ssh/ssh_known_hosts", mode="644", owner="root", group="root",
                    host_names=("alpha.example.com", "alpha"),
                    key_types=("ed25519", "rsa"),
                    entries=("beta.example.com ssh-ed25519 AAAAbeta",))
    converge(kh, system)
    assert system.files["/etc/ssh/ssh_known_hosts"].content.decode().splitlines() == [
        "# Managed by keel. Manual changes will be overwritten.",
        "alpha.example.com,alpha ssh-ed25519 AAAAed25519KEY",
        "alpha.example.com,alpha ssh-rsa AAAArsaKEY",
        "beta.example.com ssh-ed25519 AAAAbeta",
    ]
    assert_idempotent(kh, system)

def test_known_hosts_validation():
    with pytest.raises(ValidationError, match="cannot be given directly"):
        KnownHosts("/etc/ssh/ssh_known_hosts", content="x")
    with pytest.raises(ValidationError, match="at least one host name"):
        KnownHosts("/etc/ssh/ssh_known_hosts", key_types=("rsa",))
    assert KnownHosts("/etc/ssh/ssh_known_hosts", entries=["a"]).entries == ("a",) # type: ignore[arg-type]

def test_file_numeric_owner_and_group(system):
    system.groups["users"] = GroupEntry(name="users", gid=100, members=[])
    system.files["/etc/motd"] = FakeFile("file", b"hello\n", mode="644", owner="root", group="users")
    assert converge(File("/etc/motd", owner="0", group="100"), system).unchanged()

    delta = converge(File("/etc/motd", group="0"), system)
    assert [(c.key, c.prior, c.new) for c in delta.changes()] == [("group", "100", "0")]
    assert system.files["/etc/motd"].group == "root"
    assert_idempotent(File("/etc/motd", group="0"), system)
