"""Run command implementation."""

import logging
import sys
from argparse import Namespace
from pathlib import Path
from typing import List, Optional

from toolrunner.config import HarnessConfig, load_config
from toolrunner.exceptions import ConfigValidationError, InvocationError, LoadError
from toolrunner.sandbox import Sandbox, ToolResult


logger = logging.getLogger(__name__)

LOAD_ERROR_EXIT_CODE = 2
INVOCATION_ERROR_EXIT_CODE = 1


def configure_logging(args: Namespace) -> None:
    """Set up logging before the sandbox takes over the standard streams."""
    level_name = 'warning' if args.log_level == 'warn' else args.log_level
    log_level = getattr(logging, level_name.upper())
    if args.debug:
        log_level = logging.DEBUG
    elif args.quiet:
        log_level = logging.ERROR

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def load_harness_config(path: Optional[str]) -> HarnessConfig:
    """Load config, logging every validation error before re-raising."""
    try:
        return load_config(path)
    except ConfigValidationError as e:
        for error in e.errors:
            logger.error(f"Validation error: {error.message}")
        raise


def tool_arguments(args: Namespace) -> List[str]:
    remainder = list(args.args or [])
    if remainder and remainder[0] == '--':
        remainder = remainder[1:]
    return remainder


def replay_output(stdout: Optional[str], stderr: Optional[str]) -> None:
    """Write captured tool output to the real console."""
    if stdout:
        sys.stdout.write(stdout)
        sys.stdout.flush()
    if stderr:
        sys.stderr.write(stderr)
        sys.stderr.flush()


def run_tool(args: Namespace) -> int:
    """
    Run one tool in a sandbox and return its exit code.

    Captured output is replayed after the sandbox is torn down.
    """
    configure_logging(args)

    try:
        config = load_harness_config(args.config)
    except ConfigValidationError as e:
        return e.exit_code

    tool_args = tool_arguments(args)
    configured = config.tools.get(args.tool)
    if configured is not None:
        location = configured.path
        name = configured.name
        if not tool_args:
            tool_args = list(configured.args)
    else:
        location = Path(args.tool)
        name = None

    timeout_sec = args.timeout if args.timeout is not None else config.timeout_sec

    result: Optional[ToolResult] = None
    failure: Optional[InvocationError] = None
    load_failure: Optional[LoadError] = None

    logger.info(f"Running tool: {location}")
    with Sandbox(config) as sandbox:
        try:
            tool = sandbox.load(location, name)
        except LoadError as e:
            load_failure = e
        else:
            try:
                result = sandbox.run(tool, tool_args, timeout_sec=timeout_sec)
            except InvocationError as e:
                failure = e

    if load_failure is not None:
        logger.error(f"Failed to load tool: {load_failure}")
        return LOAD_ERROR_EXIT_CODE

    if failure is not None:
        replay_output(failure.stdout, failure.stderr)
        if failure.is_policy_violation:
            logger.error(f"Sandbox policy violation: {failure.cause}")
        else:
            logger.error(f"Tool failed: {failure}")
        return INVOCATION_ERROR_EXIT_CODE

    assert result is not None
    replay_output(result.stdout, result.stderr)
    if result.error:
        logger.error(result.error["message"])
    logger.info(f"Tool {result.name} exited with {result.exit_code}")
    return result.exit_code
