"""
Provides the top-level logic of keel such as
the CLI interface and the compile-then-converge run.
"""

import argparse
import os
import signal
import sys
from typing import Any, Callable, NoReturn, Optional

from keel import globals as G
from keel import logger
from keel.catalog import Catalog
from keel.executor import Executor
from keel.loader import load_hierarchy
from keel.logger import col
from keel.modules import ssh
from keel.modules.ssh.sources import LdapExportSource
from keel.systems.local import LocalSystem
from keel.systems.system import System
from keel.utils import ApplyError, FatalError, die_error, install_exception_hook, print_fullwith, print_table, print_warning
from keel.version import version

def gather_facts(system: System, args: argparse.Namespace) -> dict[str, Any]:
    """
    Returns the facts of the managed system, with the overrides given on the command line.
    The system is only queried if not all facts were given.
    """
    facts: dict[str, Any] = {}
    if args.platform is None or args.fqdn is None:
        facts = system.facts()
    if args.platform is not None:
        facts["os_family"] = args.platform
    if args.fqdn is not None:
        facts["fqdn"] = args.fqdn
        facts["hostname"] = args.fqdn.split(".", maxsplit=1)[0]
    return facts

def show_catalog(catalog: Catalog) -> None:
    """
    Display the compiled catalog with the relationships of each resource.

    Parameters
    ----------
    catalog
        The catalog to display.
    """
    col_red_b    = col("\033[1;31m")
    col_green    = col("\033[32m")
    col_yellow   = col("\033[33m")
    col_blue     = col("\033[34m")
    col_darker   = col("\033[90m")
    col_darker_b = col("\033[1;90m")
    col_reset    = col("\033[m")

    print_fullwith(["──────── ", col_red_b, "catalog", col_reset, " ", col_darker_b, catalog.host, col_reset, " "],
                   [col_darker, f" {len(catalog)} resources", col_reset])

    allow_users = catalog.parameters.get("allow_users")
    if allow_users:
        print(f"{col_blue}allowed users{col_reset} {' '.join(allow_users)}")

    graph = catalog.graph
    table = []
    for res in catalog:
        requires = [str(p) for p in graph.predecessors(res.ref)]
        notifies = [str(s) for s in graph.successors(res.ref) if graph.edge(res.ref, s).notify] # type: ignore[union-attr]
        table.append([[col_darker, str(graph.ranks[res.ref]), col_reset],
                      [col_green, str(res.ref), col_reset],
                      [col_darker, ", ".join(requires), col_reset],
                      [col_yellow, ", ".join(notifies), col_reset]])
    print_table([[col_blue, "rank", col_reset],
                 [col_blue, "resource", col_reset],
                 [col_blue, "after", col_reset],
                 [col_blue, "notifies", col_reset]],
                 table, min_col_width=[4, 24, 0, 0])

def main_run(args: argparse.Namespace) -> None:
    """
    Main method used to compile the catalog and converge the system.

    Parameters
    ----------
    args
        The parsed arguments
    """
    system = LocalSystem(command_timeout=args.timeout)

    # Everything up to here only queries the system. Any error aborts before anything is changed.
    try:
        facts = gather_facts(system, args)
        hierarchy = load_hierarchy(args.site, args.params)
        user_source = LdapExportSource(args.ldap_export) if args.ldap_export is not None else None
        logger.compile_catalog(facts.get("fqdn") or "localhost", args.site)
        catalog = ssh.compile_catalog(hierarchy, facts, user_source=user_source)
    except FatalError as e:
        die_error(str(e), loc=e.loc)
    except ApplyError as e:
        die_error(f"could not gather facts: {e}")

    if args.show_catalog:
        show_catalog(catalog)
        sys.exit(0)

    executor = Executor(catalog, system, dry=args.dry, jobs=args.jobs)
    def _on_interrupt(signum: int, frame: Any) -> None:
        _ = (signum, frame)
        if executor.cancelled:
            raise KeyboardInterrupt()
        print_warning("interrupted, finishing running steps. Interrupt again to abort.")
        executor.cancel()

    logger.converge(catalog.host, len(catalog), args.dry)
    previous_handler = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        with logger.indent():
            report = executor.run()
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    logger.print_summary(report)
    sys.exit(report.exit_code)

class ArgumentParserError(Exception):
    """Error class for argument parsing errors."""

class ThrowingArgumentParser(argparse.ArgumentParser):
    """An argument parser that throws when invalid argument types are passed."""

    def error(self, message: str) -> NoReturn:
        """Raises an exception on error."""
        raise ArgumentParserError(message)

class ActionImmediateFunction(argparse.Action):
    """An action that calls a function immediately when the argument is encountered."""
    def __init__(self, option_strings: Any, func: Callable[[Any], Any], *args: Any, **kwargs: Any):
        self.func = func
        super().__init__(option_strings, *args, **kwargs)

    def __call__(self, parser: argparse.ArgumentParser, namespace: argparse.Namespace, values: Any, option_string: Any = None) -> None:
        _ = (parser, namespace, values, option_string)
        self.func(values)

def _positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise ValueError(value)
    return n

def _list_platforms(_: Any) -> None:
    """Prints the supported platforms and exits."""
    for name, platform in ssh.params.platforms.items():
        print(f"{name}: service {platform.service_name}, package {platform.package_name} ({platform.package_provider})")
    sys.exit(0)

def main(argv: Optional[list[str]] = None) -> None:
    """
    The main program entry point. This will parse arguments, compile the catalog
    and converge the local system. Defaults to sys.argv[1:] if argv is None.
    """
    if argv is None:
        argv = sys.argv[1:]
    parser = ThrowingArgumentParser(description="Converges the ssh server of this host to the state declared by a site module.")

    # General options
    parser.add_argument('-V', '--version', action='version',
            version=f"%(prog)s version {version}")
    parser.add_argument('--list-platforms', action=ActionImmediateFunction, func=_list_platforms, nargs=0,
            help="List the supported platforms and exit.")

    # Catalog options
    parser.add_argument('-p', '--param', dest='params', action='append', default=[], metavar='KEY=VALUE',
            help="Override a parameter. The value is parsed as a python literal, or taken as a string if that fails. Can be given multiple times.")
    parser.add_argument('--platform', dest='platform', default=None, type=str,
            help="Use the given os family instead of detecting it (Debian, RedHat, Archlinux or Gentoo).")
    parser.add_argument('--fqdn', dest='fqdn', default=None, type=str,
            help="Use the given fully qualified host name instead of querying it.")
    parser.add_argument('--ldap-export', dest='ldap_export', default=None, type=str, metavar='FILE',
            help="An LDIF export whose uid attributes are the allowed users when use_ldapuser is set.")
    parser.add_argument('--show-catalog', dest='show_catalog', action='store_true',
            help="Display the compiled catalog and exit without touching the system.")

    # Convergence options
    parser.add_argument('--dry', '--dry-run', '--pretend', dest='dry', action='store_true',
            help="Print what would be done instead of performing any actions. Probing commands will still be executed to determine the current state of the system.")
    parser.add_argument('-j', '--jobs', dest='jobs', default=1, type=_positive_int,
            help="Converge up to this many independent resources in parallel. Defaults to 1.")
    parser.add_argument('--timeout', dest='timeout', default=300.0, type=float,
            help="The maximum runtime of a single external command in seconds. Defaults to 300.")
    parser.add_argument('-v', '--verbose', dest='verbose', action='count', default=0,
            help="Increase output verbosity. Can be given multiple times.")
    parser.add_argument('--no-changes', dest='changes', action='store_false',
            help="Don't display changes for each resource in a short diff-like format.")
    parser.add_argument('--diff', dest='diff', action='store_true',
            help="Display an actual diff when a resource changes a file. Use with care, as this might print secrets!")
    parser.add_argument('--debug', dest='debug', action='store_true',
            help="Enable debugging output. Forces verbosity to max value.")
    parser.add_argument('--no-color', dest='no_color', action='store_true',
            help="Disables any color output. Color can also be disabled by setting the NO_COLOR environment variable.")
    parser.add_argument('site', type=str, nargs='?', default=None,
            help="The site module (`*.py`) whose public variables set the parameters of this host.")
    parser.set_defaults(func=main_run)

    try:
        args: argparse.Namespace = parser.parse_args(argv)
    except ArgumentParserError as e:
        die_error(str(e))

    # Force max verbosity with --debug
    if args.debug:
        args.verbose = 99

    # Disable color when NO_COLOR is set
    if os.getenv("NO_COLOR") is not None:
        args.no_color = True

    # Install exception hook to modify traceback, if debug isn't set.
    # Exceptions raised from the site module will then be displayed a lot cleaner.
    if not args.debug:
        install_exception_hook()

    G.args = args
    args.func(args)
