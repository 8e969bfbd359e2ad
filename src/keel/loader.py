"""Provides loading of parameter layers from site modules and the command line."""

import ast
import os
from types import ModuleType
from typing import Any, Optional

from keel.hierarchy import Hierarchy, Layer
from keel.utils import CompilationError, load_py_module

def _is_normal_var(attr: str, value: Any) -> bool:
    """Returns True if the attribute doesn't start with an underscore, and is neither a module nor callable."""
    return not attr.startswith("_") \
            and not isinstance(value, ModuleType) \
            and not callable(value)

def load_site(file: str) -> Layer:
    """
    Loads a site module. All public top-level variables of the module are parameters.

    Parameters
    ----------
    file
        The python file to load.

    Returns
    -------
    Layer
        A layer holding the parameters defined by the module.

    Raises
    ------
    CompilationError
        The file does not exist.
    """
    if not os.path.isfile(file):
        raise CompilationError(f"site module '{file}' does not exist")
    module = load_py_module(file)
    values = {attr: v for attr,v in vars(module).items() if _is_normal_var(attr, v)}
    return Layer(name=f"site module {os.path.basename(file)}", values=values, source=file)

def parse_value(value: str) -> Any:
    """Parses a command line value as a python literal, or returns it unchanged if it isn't one."""
    try:
        return ast.literal_eval(value)
    except (ValueError, SyntaxError):
        return value

def parse_overrides(assignments: Optional[list[str]]) -> Layer:
    """
    Parses `key=value` assignments given on the command line.

    Raises
    ------
    CompilationError
        An assignment has no `=` or an empty key.
    """
    values = {}
    for assignment in assignments or []:
        key, sep, value = assignment.partition("=")
        key = key.strip()
        if not sep or not key:
            raise CompilationError(f"invalid parameter override '{assignment}', expected KEY=VALUE")
        values[key] = parse_value(value)
    return Layer(name="command line", values=values)

def load_hierarchy(site: Optional[str], overrides: Optional[list[str]]) -> Hierarchy:
    """Returns the hierarchy given by the caller: command line overrides, then the site module."""
    layers = [parse_overrides(overrides)]
    if site is not None:
        layers.append(load_site(site))
    return Hierarchy(layers)
