import os

import pytest

from keel.resources.api import Delta
from keel.resources.files import File
from keel.systems.local import LocalSystem
from keel.utils import ApplyError

def test_run_timeout():
    with pytest.raises(ApplyError, match="timed out after 0.1 seconds"):
        LocalSystem(command_timeout=0.1).run(["sleep", "1"])

def test_run_missing_command():
    with pytest.raises(ApplyError, match="could not be executed"):
        LocalSystem().run(["keel-no-such-command"])

def test_stat_numeric_ids(tmp_path):
    path = str(tmp_path / "file")
    with open(path, "wb") as f:
        f.write(b"x")
    st = os.stat(path)
    stat = LocalSystem().stat(path)
    assert stat is not None
    assert (stat.uid, stat.gid) == (st.st_uid, st.st_gid)

    delta = Delta()
    File(path, owner=str(st.st_uid), group=str(st.st_gid)).examine(LocalSystem(), delta)
    assert delta.changes() == []

def test_upload_group_only_keeps_owner(tmp_path):
    path = str(tmp_path / "file")
    LocalSystem().upload(path, b"content", mode="640", group=str(os.getgid()))
    st = os.stat(path)
    assert (st.st_uid, st.st_gid) == (os.getuid(), os.getgid())
    assert oct(st.st_mode & 0o777) == "0o640"
