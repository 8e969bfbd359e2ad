import pytest

from keel.hierarchy import Hierarchy, Layer, overlay
from keel.utils import CompilationError

def create_hierarchy():
    return Hierarchy([
        Layer("command line", {"port": 2222}),
        Layer("site", {"port": 22, "name": "site", "unset": None}, source="site.py"),
        Layer("defaults", {"port": 1, "name": "default", "unset": "default", "extra": []}),
    ])

def test_lookup_priority():
    h = create_hierarchy()
    assert h.lookup("port") == 2222
    assert h.lookup("name") == "site"
    assert h.lookup("missing", "fallback") == "fallback"

def test_none_falls_through():
    h = create_hierarchy()
    assert h.lookup("unset") == "default"
    assert h.origin("unset").name == "defaults"
    assert h.origin("port").name == "command line"
    assert h.origin("missing") is None

def test_merged():
    assert create_hierarchy().merged() == {"port": 2222, "name": "site", "unset": "default", "extra": []}

def test_resolve():
    assert create_hierarchy().resolve(["port", "name", "unset", "extra"]) == {"port": 2222, "name": "site", "unset": "default", "extra": []}

def test_resolve_missing():
    h = Hierarchy([Layer("site", {"a": None}), Layer("defaults", {"a": None, "b": None, "c": 1})])
    with pytest.raises(CompilationError, match=r"missing value for required parameter\(s\): a, b"):
        h.resolve(["a", "b", "c"])

def test_resolve_unknown():
    h = create_hierarchy()
    with pytest.raises(CompilationError, match=r"unknown parameter\(s\) in site: name") as e:
        h.resolve(["port", "unset", "extra"])
    assert e.value.loc == "site.py"

def test_with_layer():
    h = create_hierarchy()
    h2 = h.with_layer(Layer("top", {"port": 1}))
    assert h2.lookup("port") == 1
    assert h.lookup("port") == 2222
    h3 = h.with_layer(Layer("bottom", {"new": True}), index=len(h.layers))
    assert [l.name for l in h3] == ["command line", "site", "defaults", "bottom"]

def test_overlay():
    base = {"shell": "/bin/bash", "managehome": True, "uid": None}
    assert overlay(base, {"shell": "/bin/zsh", "managehome": None, "uid": 1001}) == {"shell": "/bin/zsh", "managehome": True, "uid": 1001}
    assert base["shell"] == "/bin/bash"
