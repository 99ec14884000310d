#!/usr/bin/env python3
"""storyloop CLI entrypoints."""

import sys
import argparse
import logging
from pathlib import Path

from storyloop import __version__
from storyloop.lib import output
from storyloop.commands import run as cmd_run_module
from storyloop.commands import prd as cmd_prd_module
from storyloop.commands import setup as cmd_setup_module

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
    )


def iteration_budget(values: list[str]) -> int | None:
    """Budget from the positional arguments. The last number wins, anything else is ignored."""
    budget = None
    for value in values:
        if value.isdigit():
            budget = int(value)
        else:
            output.warn(f"Ignoring non-numeric argument '{value}'")
    return budget


def _add_dir_argument(parser: argparse.ArgumentParser):
    parser.add_argument('--dir', '-C', type=Path, default=None,
                        help='Project directory (default: current directory)')


def _workdir(args) -> Path:
    return (args.dir or Path.cwd()).resolve()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='storyloop',
        description='Run an AI coding assistant through prd.json, one story per iteration.',
        epilog=(
            "examples:\n"
            "  storyloop                  # sandbox + auto-approve, 10 iterations\n"
            "  storyloop --sandbox 20     # sandbox mode, 20 iterations\n"
            "  storyloop --no-sandbox 5   # no sandbox, 5 iterations"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('iterations', nargs='*', default=[],
                        help='Maximum iterations (default: MAX_ITERATIONS or 10)')
    parser.add_argument('--sandbox', '-s', dest='sandbox', action='store_const', const=True,
                        default=None, help='Run the oracle in a Docker/Podman sandbox (default)')
    parser.add_argument('--no-sandbox', dest='sandbox', action='store_const', const=False,
                        help='Run the oracle without a sandbox (full system access)')
    parser.add_argument('--yolo', action='store_true',
                        help='Auto-approve all oracle actions (always on; accepted for compatibility)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Show oracle replies and debug logging')
    _add_dir_argument(parser)
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def build_prd_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='storyloop-prd',
        description='Generate prd.json from a project description (argument or stdin).',
    )
    parser.add_argument('description', nargs='*', help='Project description')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    _add_dir_argument(parser)
    return parser


def build_setup_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='storyloop-setup',
        description='Create prd.json through an interactive interview with the oracle.',
    )
    parser.add_argument('--yes', '-y', action='store_true', help='Overwrite prd.json without asking')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    _add_dir_argument(parser)
    return parser


def parse_run_args(argv=None) -> argparse.Namespace:
    """Parse loop arguments without rejecting unknown ones.

    Options and numbers may be interleaved. Unknown options are warned about
    and skipped, and args.iterations ends up as an int or None.
    """
    args, unknown = build_parser().parse_known_intermixed_args(argv)
    for arg in unknown:
        output.warn(f"Ignoring unknown argument '{arg}'")
    args.iterations = iteration_budget(args.iterations)
    return args


def main(argv=None):
    args = parse_run_args(argv)
    configure_logging(args.verbose)
    return cmd_run_module.cmd_run(args, _workdir(args))


def main_prd(argv=None):
    args = build_prd_parser().parse_args(argv)
    configure_logging(args.verbose)
    return cmd_prd_module.cmd_generate_prd(args, _workdir(args))


def main_setup(argv=None):
    args = build_setup_parser().parse_args(argv)
    configure_logging(args.verbose)
    return cmd_setup_module.cmd_setup(args, _workdir(args))


if __name__ == '__main__':
    sys.exit(main())
