"""
keel compiles a declarative catalog of resources for a host and converges
the host towards it, applying only what differs from the current state.
"""

from keel.version import version as __version__
