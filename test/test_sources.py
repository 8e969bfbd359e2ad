import os

import pytest

from keel.modules.ssh.sources import LdapExportSource, StaticUserSource, parse_ldif_uids
from keel.utils import CompilationError

SITES = os.path.join(os.path.dirname(__file__), "sites")

def test_static_source():
    names = ["bob", "alice"]
    source = StaticUserSource(names)
    names.append("carol")
    assert source.users() == ["bob", "alice"]

def test_ldap_export():
    source = LdapExportSource(os.path.join(SITES, "people.ldif"))
    assert source.users() == ["bob", "carol", "dave"]

def test_ldap_export_missing(tmp_path):
    path = str(tmp_path / "missing.ldif")
    with pytest.raises(CompilationError, match="could not read ldap export") as e:
        LdapExportSource(path).users()
    assert e.value.loc == path

def test_parse_ldif():
    assert parse_ldif_uids("uid: alice\nuidNumber: 1001\n\nuid:   bob  \n") == ["alice", "bob"]
    assert parse_ldif_uids("# uid: nobody\ncn: uid\n") == []
    assert parse_ldif_uids("uid: al\n ice\n") == ["alice"]

def test_parse_ldif_base64():
    assert parse_ldif_uids("uid:: YWxpY2U=\n") == ["alice"]
    with pytest.raises(CompilationError, match="invalid base64 value for uid") as e:
        parse_ldif_uids("uid:: not*base64\n", source="people.ldif")
    assert e.value.loc == "people.ldif"
