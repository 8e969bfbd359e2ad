"""Stores all global state."""

import argparse
import os
from typing import cast
from jinja2 import Environment, FileSystemLoader, StrictUndefined

args: argparse.Namespace = cast(argparse.Namespace, None)
"""
The parsed command line arguments. Determines verbosity, coloring and
whether changes and diffs are printed by the logger.
"""

template_dirs: list[str] = [os.path.join(os.path.dirname(os.path.realpath(__file__)), "modules", "ssh", "templates")]
"""The directories searched for templates of catalog modules."""

jinja2_env: Environment = Environment(
    loader=FileSystemLoader(template_dirs, followlinks=True),
    autoescape=False,
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined)
"""The jinja2 environment used for templating."""
