"""Batch command: run every configured tool once and report JSON results."""

import json
import logging
import sys
from argparse import Namespace
from typing import Any, Dict, List

from toolrunner.exceptions import ConfigValidationError, InvocationError, LoadError
from toolrunner.sandbox import Sandbox

from .run import configure_logging, load_harness_config


logger = logging.getLogger(__name__)


def _failure_record(name: str, error_type: str, error: Exception, **extra: Any) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "name": name,
        "exit_code": None,
        "error": {
            "type": error_type,
            "message": str(error),
            "context": extra.pop("context", {}),
        },
    }
    record.update(extra)
    return record


def run_batch(args: Namespace) -> int:
    """
    Run all tools from the config file.

    Returns 1 if any tool failed to load or raised, 0 otherwise; the tools'
    own exit codes are reported, not aggregated.
    """
    configure_logging(args)

    try:
        config = load_harness_config(args.batch_config)
    except ConfigValidationError as e:
        return e.exit_code

    if not config.tools:
        logger.error("No tools configured")
        return 1

    results: List[Dict[str, Any]] = []
    failed = False

    with Sandbox(config) as sandbox:
        for tool_config in config.tools.values():
            try:
                tool = sandbox.load(tool_config.path, tool_config.name)
            except LoadError as e:
                failed = True
                results.append(_failure_record(tool_config.name, "load_error", e))
                continue

            try:
                result = sandbox.run(tool, tool_config.args, timeout_sec=args.timeout)
            except InvocationError as e:
                failed = True
                results.append(_failure_record(
                    tool_config.name,
                    "invocation_error",
                    e,
                    context={"policy_violation": e.is_policy_violation},
                    stdout=e.stdout,
                    stderr=e.stderr,
                ))
                continue

            results.append(result.to_state_dict())

    json.dump(results, sys.stdout, indent=2)
    sys.stdout.write("\n")

    for record in results:
        if record.get("error"):
            logger.error(f"{record['name']}: {record['error']['message']}")
    return 1 if failed else 0
