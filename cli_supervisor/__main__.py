"""
Command line for the CLI supervisor.

Usage:
    python -m cli_supervisor resolve                 # Print how the CLI is invoked
    python -m cli_supervisor ensure                  # Install/upgrade the managed CLI
    python -m cli_supervisor version                 # Run `<cli> --version`
    python -m cli_supervisor run -- ARGS...          # Run the CLI with ARGS

Exit codes: 0 success, the CLI's own exit code on failure, 124 timeout,
127 CLI not found or unavailable, 2 configuration errors.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

from . import __version__
from .config import validate_config
from .errors import ToolNotFoundError
from .logging_config import setup_logging
from .outcomes import ExecutionOutcome, Failure, NotFound, Success, Timeout, Unavailable
from .supervisor import Supervisor

EXIT_CONFIG_ERROR = 2
EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127


def emit_outcome(outcome: ExecutionOutcome) -> int:
    """
    Print an outcome the way a shell user expects and map it to an exit code.

    Returns:
        Process exit code
    """
    if isinstance(outcome, (Success, Failure)):
        sys.stdout.write(outcome.stdout)
        sys.stdout.flush()
        sys.stderr.write(outcome.stderr)
        if isinstance(outcome, Success):
            return 0
        # Negative codes mean the child died from a signal
        return outcome.exit_code if outcome.exit_code > 0 else 1

    if isinstance(outcome, Timeout):
        print(f"✗ CLI timed out after {outcome.elapsed:.1f}s", file=sys.stderr)
        return EXIT_TIMEOUT

    if isinstance(outcome, NotFound):
        print(f"✗ {outcome.message}", file=sys.stderr)
        return EXIT_NOT_FOUND

    if isinstance(outcome, Unavailable):
        print(f"✗ CLI unavailable: {outcome.message}", file=sys.stderr)
        return EXIT_NOT_FOUND

    raise TypeError(f"Unknown execution outcome: {outcome!r}")


def cmd_resolve(supervisor: Supervisor, args: argparse.Namespace) -> int:
    """Print the resolved command line prefix."""
    try:
        spec = supervisor.resolve()
    except ToolNotFoundError as e:
        print(f"✗ {e.message}", file=sys.stderr)
        return EXIT_NOT_FOUND
    print(spec)
    return 0


def cmd_ensure(supervisor: Supervisor, args: argparse.Namespace) -> int:
    """Install or upgrade the managed CLI and print its path."""
    installer = supervisor.installer
    if installer is None:
        print("# install_strategy=system: no managed installation, resolving only", file=sys.stderr)
        return cmd_resolve(supervisor, args)

    try:
        path = installer.ensure_available()
    except ToolNotFoundError as e:
        print(f"✗ {e.message}", file=sys.stderr)
        return EXIT_NOT_FOUND

    status = installer.status()
    print(path)
    print(
        f"✓ {status.requirement} via {status.package_manager}, "
        f"next update check in {status.next_check_in_hours}h",
        file=sys.stderr,
    )
    return 0


def cmd_version(supervisor: Supervisor, args: argparse.Namespace) -> int:
    return emit_outcome(supervisor.check_version())


def cmd_run(supervisor: Supervisor, args: argparse.Namespace) -> int:
    """Run the CLI with the remaining arguments."""
    cli_args = list(args.cli_args)
    if cli_args and cli_args[0] == "--":
        cli_args = cli_args[1:]
    if not cli_args:
        print("Please specify arguments for the CLI: run -- ARGS...", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    stdin = None
    if args.stdin_file == "-":
        stdin = sys.stdin.buffer.read()
    elif args.stdin_file:
        try:
            stdin = Path(args.stdin_file).read_bytes()
        except OSError as e:
            print(f"✗ Cannot read stdin file: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR

    outcome = supervisor.execute(cli_args, stdin=stdin, timeout=args.timeout, cwd=args.cwd)
    return emit_outcome(outcome)


COMMANDS = {
    "resolve": cmd_resolve,
    "ensure": cmd_ensure,
    "version": cmd_version,
    "run": cmd_run,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cli_supervisor",
        description="Resolve, install and run an external versioned CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to a configuration file (YAML or JSON)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only log warnings and errors",
    )
    parser.add_argument(
        "--log-file",
        help="Also write a debug log to this file",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("resolve", help="Print how the CLI is invoked")
    subparsers.add_parser("ensure", help="Install or upgrade the managed CLI")
    subparsers.add_parser("version", help="Run the CLI's --version")

    run_parser = subparsers.add_parser("run", help="Run the CLI")
    run_parser.add_argument(
        "--timeout",
        type=float,
        help="Timeout in seconds (default from configuration)",
    )
    run_parser.add_argument(
        "--stdin-file",
        help="Feed this file to the CLI's stdin ('-' for our own stdin)",
    )
    run_parser.add_argument(
        "--cwd",
        help="Working directory for the CLI",
    )
    run_parser.add_argument(
        "cli_args",
        nargs=argparse.REMAINDER,
        help="Arguments passed to the CLI (after --)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)

    try:
        supervisor = Supervisor.from_config(config_path=args.config, verbose=args.verbose)
    except ValueError as e:
        print(f"✗ Invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    for warning in validate_config(supervisor.config):
        print(f"⚠️  {warning}", file=sys.stderr)

    with supervisor:
        return COMMANDS[args.command](supervisor, args)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
