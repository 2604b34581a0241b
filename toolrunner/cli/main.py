"""Main CLI entry point for the tool runner."""

import argparse
import sys
from typing import Optional

from .commands import run_batch, run_tool


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--timeout',
        type=float,
        metavar='SECONDS',
        help='Stop waiting for a tool after this many seconds'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--quiet',
        action='store_true',
        help='Suppress non-error output'
    )
    parser.add_argument(
        '--log-level',
        choices=['debug', 'info', 'warn', 'error'],
        default='warn',
        help='Set log level'
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the tool runner CLI."""
    parser = argparse.ArgumentParser(
        prog='toolrun',
        description='Run command-line tools in-process'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    run_parser = subparsers.add_parser('run', help='Run one tool archive')
    run_parser.add_argument(
        'tool',
        type=str,
        help='Path to tool archive or directory (or a tool name from --config)'
    )
    run_parser.add_argument(
        'args',
        nargs=argparse.REMAINDER,
        help='Arguments passed to the tool'
    )
    run_parser.add_argument(
        '--config',
        type=str,
        help='Path to harness config YAML file'
    )
    add_common_arguments(run_parser)

    batch_parser = subparsers.add_parser('batch', help='Run every tool listed in a config file')
    batch_parser.add_argument(
        'batch_config',
        type=str,
        help='Path to harness config YAML file'
    )
    add_common_arguments(batch_parser)

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    if parsed_args.command == 'run':
        return run_tool(parsed_args)
    elif parsed_args.command == 'batch':
        return run_batch(parsed_args)
    else:
        parser.print_help()
        return 1


if __name__ == '__main__':
    sys.exit(main())
