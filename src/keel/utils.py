"""
Provides utility functions and the error types shared by all components.
"""

from __future__ import annotations

import importlib.machinery
import importlib.util
import os
import shutil
import sys
import traceback
import uuid
from types import ModuleType, TracebackType
from typing import Any, Collection, NoReturn, Type, TypeVar, Callable, Iterable, Optional

from keel.logger import col

class FatalError(Exception):
    """An exception type for fatal errors, optionally including a file location."""
    def __init__(self, msg: str, loc: Optional[str] = None):
        super().__init__(msg)
        self.loc = loc

class CompilationError(FatalError):
    """
    Raised while compiling a catalog. Always aborts the run before
    anything on the managed system is changed.
    """

class ValidationError(CompilationError):
    """Raised when a parameter is well-formed but has an invalid value."""

class ApplyError(Exception):
    """
    Raised when examining or applying a single resource fails, for example
    because an external command failed or timed out. Only the affected
    resource (and its dependents) will be marked as failed.
    """

class CycleError(ValueError):
    """An error that is throw to report a cycle in a graph that must be cycle free."""

    def __init__(self, msg: str, cycle: list[Any]):
        super().__init__(msg)
        self.cycle = cycle

T = TypeVar('T')

# A set of all modules names that are dynamically loaded modules.
# These are guaranteed to be unique across all possible modules,
# as a random uuid will be generated at load-time for each module.
dynamically_loaded_modules: set[str] = set()

def print_warning(msg: str) -> None:
    """Prints a message with a (possibly colored) 'warning: ' prefix."""
    print(f"{col('[1;33m')}warning:{col('[m')} {msg}")

def print_error(msg: str, loc: Optional[str] = None) -> None:
    """Prints a message with a (possibly colored) 'error: ' prefix."""
    if loc is None:
        print(f"{col('[1;31m')}error:{col('[m')} {msg}", file=sys.stderr)
    else:
        print(f"{col('[1m')}{loc}: {col('[1;31m')}error:{col('[m')} {msg}", file=sys.stderr)

def len_ignore_leading_ansi(s: str) -> int:
    """Returns the length of the string or 0 if it starts with `\033[`"""
    return 0 if s.startswith("\033[") else len(s)

def ansilen(ss: Collection[str]) -> int:
    """Returns the length of all strings combined ignoring ansi control sequences"""
    return sum(map(len_ignore_leading_ansi, ss))

def ansipad(ss: Collection[str], pad: int = 0) -> str:
    """Joins an array of string and ansi codes together and pads the result with spaces to at least `pad` characters."""
    return ''.join(ss) + " " * max(0, pad - ansilen(ss))

def print_fullwith(left: Optional[list[str]] = None, right: Optional[list[str]] = None, pad: str = '─', **kwargs: Any) -> None:
    """Prints a message padded to the terminal width."""
    if not left:
        left = []
    if not right:
        right = []

    cols = max(shutil.get_terminal_size((80, 20)).columns, 80)
    n_pad = max(0, (cols - ansilen(left) - ansilen(right)))
    print(''.join(left) + pad * n_pad + ''.join(right), **kwargs)

def print_table(header: Collection[Collection[str]], rows: Collection[Collection[Collection[str]]], box_color: str = "\033[90m", min_col_width: Optional[list[int]] = None) -> None:
    """Prints the given rows as an ascii box table."""
    max_col_width = 48
    terminal_cols = max(shutil.get_terminal_size((80, 20)).columns, 80)

    # Calculate max needed with for each column
    cols = len(header)
    max_value_width = [0] * cols
    for i,v in enumerate(header):
        max_value_width[i] = max(max_value_width[i], ansilen(v))
    for row in rows:
        for i,v in enumerate(row):
            max_value_width[i] = max(max_value_width[i], ansilen(v))

    # Fairly distribute space between columns
    if min_col_width is None:
        min_col_width = [0] * cols
    even_col_width = terminal_cols // cols
    chars_needed_for_table_boxes = 3 * (len(header) - 1)
    available_space = terminal_cols - chars_needed_for_table_boxes
    col_width = [max(min_col_width[i], min(max_col_width, w, available_space - (cols - i - 1) * even_col_width)) for i,w in enumerate(max_value_width)]

    # Distribute remaining space to first column from the back that would need the space
    total_width = sum(col_width)
    rest = available_space - total_width
    if rest > 0:
        for i,w in reversed(list(enumerate(max_value_width))):
            if w > col_width[i]:
                col_width[i] += rest
                break

    # Print table
    col_reset = col("\033[m")
    col_box = col(box_color)
    delim = col_box + " │ " + col_reset
    print(delim.join([ansipad(c, w) for c,w in zip(header, col_width)]))
    print(col_box + "─┼─".join(["─" * w for w in col_width]) + col_reset)
    for row in rows:
        print(delim.join([ansipad(c, w) for c,w in zip(row, col_width)]))

def die_error(msg: str, loc: Optional[str] = None, status_code: int = 1) -> NoReturn:
    """Prints a message with a colored 'error: ' prefix, and exit with the given status code afterwards."""
    print_error(msg, loc=loc)
    sys.exit(status_code)

def load_py_module(file: str, pre_exec: Optional[Callable[[ModuleType], None]] = None) -> ModuleType:
    """
    Loads a module from the given filename and assigns a unique module name to it.
    Calling this function twice for the same file will yield distinct instances.
    """
    module_id = str(uuid.uuid4()).replace('-', '_')
    module_name = f"{os.path.splitext(os.path.basename(file))[0]}__dynamic__{module_id}"
    dynamically_loaded_modules.add(module_name)
    loader = importlib.machinery.SourceFileLoader(module_name, file)
    spec = importlib.util.spec_from_loader(loader.name, loader)
    if spec is None:
        raise ValueError(f"Failed to load module from file '{file}'")

    mod = importlib.util.module_from_spec(spec)
    # Run pre_exec callback after the module is loaded but before it is executed
    if pre_exec is not None:
        pre_exec(mod)
    loader.exec_module(mod)
    return mod

def print_exception(exc_type: Optional[Type[BaseException]], exc_info: Optional[BaseException], tb: Optional[TracebackType]) -> None:
    """
    An exception hook that prints the traceback beginning from the last
    dynamically loaded module (e.g. the site module), if one is involved.
    """
    original_tb = tb
    last_dynamic_tb = None
    # Find the last dynamically loaded module in the traceback
    while tb:
        frame = tb.tb_frame
        if "__name__" in frame.f_locals and frame.f_locals['__name__'] in dynamically_loaded_modules:
            last_dynamic_tb = tb
        tb = tb.tb_next

    traceback.print_exception(exc_type, exc_info, last_dynamic_tb or original_tb)

def install_exception_hook() -> None:
    """
    Installs a new global exception handler, that will shorten the
    traceback of exceptions raised from dynamically loaded modules.
    """
    sys.excepthook = print_exception

def rank_sort(vertices: Iterable[T], preds_of: Callable[[T], Iterable[T]], childs_of: Callable[[T], Iterable[T]]) -> dict[T, int]:
    """
    Calculates the top-down rank for each vertex, which is the length of the longest
    path from any root to the vertex. Supports graphs with multiple components.
    The graph must not have any cycles or a CycleError will be thrown.

    Parameters
    ----------
    vertices
        A list of vertices
    preds_of
        A function that returns a list of predecessors given a vertex
    childs_of
        A function that returns a list of successors given a vertex

    Raises
    ------
    CycleError
        The given graph is cyclic.

    Returns
    -------
    dict[T, int]
        A dict associating a rank to each vertex
    """
    vertices = list(vertices)
    pending = {v: len(set(preds_of(v))) for v in vertices}
    ranks = {v: 0 for v in vertices}

    # Layer by layer, a vertex is ranked once all of its predecessors are.
    queue = [v for v in vertices if pending[v] == 0]
    n_ranked = 0
    while len(queue) > 0:
        v = queue.pop(0)
        n_ranked += 1
        for c in set(childs_of(v)):
            ranks[c] = max(ranks[c], ranks[v] + 1)
            pending[c] -= 1
            if pending[c] == 0:
                queue.append(c)

    if n_ranked < len(vertices):
        raise CycleError("Cannot apply rank_sort to cyclic graph.", [v for v in vertices if pending[v] > 0])
    return ranks

def transitive_dependencies(initial: set[T], relation: Callable[[T], Iterable[T]]) -> set[T]:
    """
    Calculates all transitive dependencies given a set of initial nodes and a relation.
    The initial nodes are part of the result.
    """
    result: set[T] = set()
    stack = list(initial)
    while len(stack) > 0:
        t = stack.pop()
        if t not in result:
            result.add(t)
            stack.extend(relation(t))
    return result

def canonicalize_mode(mode: Optional[str]) -> Optional[str]:
    """
    Canonicalizes an octal mode string, so that e.g. "0644" and "644" compare equal.

    Raises
    ------
    ValueError
        The given mode is not an octal number.
    """
    if mode is None:
        return None
    try:
        return oct(int(mode, 8))[2:]
    except ValueError:
        raise ValueError(f"Invalid mode '{mode}': Must be in octal format.") # pylint: disable=raise-missing-from
