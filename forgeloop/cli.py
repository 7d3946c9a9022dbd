#!/usr/bin/env python3
"""forge CLI entrypoint."""

import argparse
import logging
import sys
from pathlib import Path

from forgeloop.commands import check as cmd_check_module
from forgeloop.commands import run as cmd_run_module
from forgeloop.commands import status as cmd_status_module
from forgeloop.commands import verify as cmd_verify_module
from forgeloop.graph import GraphError
from forgeloop.lib.config import ConfigValidationError, load_config
from forgeloop.runner.prompt import PromptError
from forgeloop.state import StatusNotFound, StatusValidationError
from forgeloop.tracker import InvalidTransition

# Raised for structural problems; reported as ERROR with exit code 2
STRUCTURAL_ERRORS = (
    ConfigValidationError,
    GraphError,
    StatusNotFound,
    StatusValidationError,
    InvalidTransition,
    PromptError,
)


def cmd_verify(args, project_dir: Path):
    return cmd_verify_module.cmd_verify(args, project_dir, load_config(project_dir))


def cmd_run(args, project_dir: Path):
    return cmd_run_module.cmd_run(args, project_dir, load_config(project_dir))


def cmd_status(args, project_dir: Path):
    return cmd_status_module.cmd_status(args, project_dir, load_config(project_dir))


def cmd_check(args, project_dir: Path):
    return cmd_check_module.cmd_check(args, project_dir, load_config(project_dir))


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='forge', description='Verification gates and convergence loop')
    parser.add_argument('--dir', '-C', default='.', help='Project directory (default: current directory)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # forge verify
    p_verify = subparsers.add_parser('verify', help='Run verification gates')
    p_verify.add_argument('--gates', '-g', help='Comma-separated gate names (default: from .forge.json)')
    p_verify.add_argument('--json', action='store_true', help='Print the result as JSON')
    p_verify.set_defaults(func=cmd_verify)

    # forge run
    p_run = subparsers.add_parser('run', help='Run the convergence loop over a requirement graph')
    p_run.add_argument('--prd', required=True, help='Graph slug under .planning/graph/')
    p_run.add_argument('--max-iterations', type=positive_int, help='Override maxIterations')
    p_run.set_defaults(func=cmd_run)

    # forge status
    p_status = subparsers.add_parser('status', help='Show milestone status')
    p_status.add_argument('--prd', help='Graph slug (default: all)')
    p_status.set_defaults(func=cmd_status)

    # forge check
    p_check = subparsers.add_parser('check', help='Pre-commit check for a fresh passing verification')
    p_check.set_defaults(func=cmd_check)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    project_dir = Path(args.dir).resolve()
    if not project_dir.is_dir():
        print(f"ERROR: Project directory not found: {project_dir}")
        return 2

    try:
        return args.func(args, project_dir)
    except STRUCTURAL_ERRORS as e:
        print(f"ERROR: {e}")
        return 2


if __name__ == '__main__':
    sys.exit(main())
