"""
Provides logging utilities.
"""

import argparse
import difflib
import os
import sys
import threading
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Optional, Type, cast

from keel import globals as G

@dataclass
class State:
    """Global state for logging."""

    indentation_level: int = 0
    """The current global indentation level."""

state: State = State()
"""The global logger state."""

output_lock = threading.RLock()
"""Serializes output when resources are converged in parallel."""

def _arg(name: str, default: Any) -> Any:
    """Returns the given command line argument, or the default if no arguments were parsed (yet)."""
    return getattr(G.args, name, default) if G.args is not None else default

def col(color_code: str) -> str:
    """Returns the given argument only if color is enabled."""
    if not isinstance(cast(Any, G.args), argparse.Namespace):
        use_color = os.getenv("NO_COLOR") is None
    else:
        use_color = not G.args.no_color

    return color_code if use_color else ""

class IndentationContext:
    """A context manager to modify the indentation level."""
    def __enter__(self) -> None:
        state.indentation_level += 1

    def __exit__(self, exc_type: Optional[Type[BaseException]], exc: Optional[BaseException], traceback: Optional[TracebackType]) -> None:
        _ = (exc_type, exc, traceback)
        state.indentation_level -= 1

def ellipsis(s: str, width: int) -> str:
    """
    Shrinks the given string to width (including an ellipsis character).

    Parameters
    ----------
    s
        The string.
    width
        The maximum width.

    Returns
    -------
    str
        A modified string with at most `width` characters.
    """
    if len(s) > width:
        s = s[:width - 1] + "…"
    return s

def indent() -> IndentationContext:
    """Returns a context manager that increases the indentation level."""
    return IndentationContext()

def indent_prefix() -> str:
    """Returns the indentation prefix for the current indentation level."""
    return "  " * state.indentation_level

def debug(msg: str) -> None:
    """Prints the given message only in debug mode."""
    if not _arg("debug", False):
        return

    with output_lock:
        print(f"   [1;34mDEBUG[m: {msg}", file=sys.stderr)

def debug_args(msg: str, args: dict[str, Any]) -> None:
    """Prints all given arguments when in debug mode."""
    if not _arg("debug", False):
        return

    str_args = ""
    args = {k: v for k,v in args.items() if k != "self"}
    if len(args) > 0:
        str_args = " " + ", ".join(f"{k}={v}" for k,v in args.items())

    with output_lock:
        print(f"   [1;34mDEBUG[m: {msg}{str_args}", file=sys.stderr)

def print_indented(msg: str, **kwargs: Any) -> None:
    """Same as print(), but prefixes the message with the indentation prefix."""
    print(f"{indent_prefix()}{msg}", **kwargs)

def compile_catalog(host: str, site: Optional[str]) -> None:
    """Prints which host a catalog is being compiled for."""
    site_info = f" {col('[37m')}({site}){col('[m')}" if site is not None else ""
    print_indented(f"{col('[1;34m')}catalog{col('[m')} {host}{site_info}")

def converge(host: str, n_resources: int, dry: bool) -> None:
    """Prints the start of a convergence run."""
    dry_run_info = f" {col('[37m')}(dry){col('[m')}" if dry else ""
    print_indented(f"{col('[33;1m')}converge{col('[m')}{dry_run_info} {host} {col('[37m')}({n_resources} resources){col('[m')}")

def print_resource_title(status: Any, title_color: str, end: str = "\n") -> None:
    """Prints the resource kind and title."""
    dry_run_info = f" {col('[37m')}(dry){col('[m')}" if status.dry else ""
    print_indented(f"{title_color}{status.ref.kind}{col('[m')}{dry_run_info} {status.ref.title}", end=end, flush=True)

def print_resource_early(status: Any) -> None:
    """Prints the resource title before the final status is known."""
    title_color = col("\033[1;33m")
    with output_lock:
        # Only overwrite status later if debugging is not enabled.
        print_resource_title(status, title_color, end=" (early status)\n" if _arg("debug", False) else "")

def decode_escape(data: bytes, encoding: str = 'utf-8') -> str:
    """
    Tries to decode the given data with the given encoding, but replaces all non-decodeable
    and non-printable characters with backslash escape sequences.

    Example:

        >>> decode_escape(b'It is Wednesday\\nmy dudes\\r\\n🐸\\xff\\0')
        'It is Wednesday\\\\nMy Dudes\\\\r\\\\n🐸\\\\xff\\\\0'

    Parameters
    ----------
    content
        The content that should be decoded and escaped.
    encoding
        The encoding that should be tried. To preserve utf-8 symbols, use 'utf-8',
        to replace any non-ascii character with an escape sequence use 'ascii'.

    Returns
    -------
    str
        The decoded and escaped string.
    """
    def escape_char(c: str) -> str:
        special = {'\x00': '\\0', '\n': '\\n', '\r': '\\r', '\t': '\\t'}
        if c in special:
            return special[c]

        num = ord(c)
        if not c.isprintable() and num <= 0xff:
            return f"\\x{num:02x}"
        return c
    return ''.join([escape_char(c) for c in data.decode(encoding, 'backslashreplace')])

def diff(filename: str, old: Optional[bytes], new: Optional[bytes], color: bool = True) -> list[str]:
    """
    Creates a diff between the old and new content of the given filename,
    that can be printed to the console. This function returns the diff
    output as an array of lines. The lines in the output array are not
    terminated by newlines.

    If color is True, the diff is colored using ANSI escape sequences.

    Parameters
    ----------
    filename
        The filename of the file that is being diffed.
    old
        The old content, or None if the file didn't exist before.
    new
        The new content, or None if the file was deleted.
    color
        Whether the output should be colored (with ANSI color sequences).

    Returns
    -------
    list[str]
        The lines of the diff output. The individual lines will not have a terminating newline.
    """
    bdiff = list(difflib.diff_bytes(difflib.unified_diff,
                        a=[] if old is None else old.split(b'\n'),
                        b=[] if new is None else new.split(b'\n'),
                        lineterm=b''))
    # Strip file name header and decode diff to be human readable.
    difflines = map(decode_escape, bdiff[2:])

    # Create custom file name header
    action = 'created' if old is None else 'deleted' if new is None else 'modified'
    title = f"{action}: {filename}"
    N = len(title)
    header = ['─' * N, title, '─' * N]

    # Apply coloring if desired
    if color:
        def apply_color(line: str) -> str:
            linecolor = {
                '+': '[32m',
                '-': '[31m',
                '@': '[34m',
            }
            return linecolor.get(line[0], '[37m') + line + '[m'
        # Apply color to diff
        difflines = map(apply_color, difflines)
        # Apply color to header
        header = list(map(lambda line: f"[33m{line}[m", header))

    return header + list(difflines)

def _change_infos(status: Any) -> list[str]:
    """Formats the changes of the given resource status as "key: prior → new" entries."""
    def to_str(v: Any) -> str:
        return v.hex() if isinstance(v, bytes) else str(v)

    verbose = _arg("verbose", 0)
    infos: list[str] = []
    for change in status.changes:
        k = change.key
        str_prior = to_str(change.prior)
        str_new = to_str(change.new)

        # Add ellipsis on long strings, if we are not in verbose mode
        if verbose == 0:
            k = ellipsis(k, 12)
            str_prior = ellipsis(str_prior, 9)
            str_new = ellipsis(str_new, 9+3+9 if change.prior is None else 9)

        if change.prior is None:
            infos.append(f"{col('[33m')}{k}: {col('[32m')}{str_new}{col('[m')}")
        else:
            infos.append(f"{col('[33m')}{k}: {col('[31m')}{str_prior}{col('[33m')} → {col('[32m')}{str_new}{col('[m')}")

    if status.refreshed:
        infos.append(f"{col('[36m')}refreshed{col('[m')}")
    return infos

def print_resource(status: Any) -> None:
    """Prints the resource summary after it has been converged."""
    if status.failed:
        title_color = col("\033[1;31m") if status.error is not None else col("\033[1;90m")
    else:
        title_color = col("\033[1;32m") if status.changed else col("\033[1m")

    with output_lock:
        # Print title, overwriting the transitive status
        print("\r", end="")
        print_resource_title(status, title_color)

        if status.failed:
            print_indented(f" {col('[37m')}└{col('[m')} " + f"{col('[31m')}{status.failure_message()}{col('[m')}")
            return

        if not _arg("changes", True):
            return

        # Cache number of upcoming diffs to determine what box character to print
        show_diff = _arg("diff", False)
        n_diffs = len(status.diffs) if show_diff else 0
        box_char = '└' if n_diffs == 0 else '├'

        infos = _change_infos(status)
        if len(infos) > 0:
            print_indented(f"{col('[37m')}{box_char}{col('[m')} " + f"{col('[37m')},{col('[m')} ".join(infos))

        if show_diff:
            diff_lines = []
            for file, old, new in status.diffs:
                diff_lines.extend(diff(file, old, new, color=col("x") == "x"))
            if len(diff_lines) > 0:
                for l in diff_lines[:-1]:
                    print_indented("│ " + l)
                print_indented("└ " + diff_lines[-1])

def print_summary(report: Any) -> None:
    """Prints the final tally of a convergence run."""
    counts = report.counts()
    parts = [
        f"{col('[32m')}{counts['applied']} applied{col('[m')}",
        f"{counts['refreshed']} refreshed",
        f"{counts['unchanged']} unchanged",
        f"{col('[31m')}{counts['failed']} failed{col('[m')}",
        f"{col('[90m')}{counts['skipped']} skipped{col('[m')}",
    ]
    if report.cancelled:
        parts.append(f"{col('[33m')}{counts['pending']} not run (cancelled){col('[m')}")
    with output_lock:
        print_indented(f"{col('[1m')}summary{col('[m')} " + ", ".join(parts))
