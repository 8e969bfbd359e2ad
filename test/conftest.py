import argparse

import pytest

import keel.globals as G
from fakes import FakeSystem

@pytest.fixture(autouse=True)
def default_args():
    G.args = argparse.Namespace(dry=False, diff=False, verbose=0, debug=False, no_color=True, changes=True)
    yield G.args

@pytest.fixture
def system():
    return FakeSystem()
