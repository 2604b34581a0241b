"""
In-process sandbox for running command-line tools.

Installs output capture and the termination guard (in that order), then
runs tools one at a time: clear the buffers, run, collect the output.
"""

import logging
import os
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Optional, Sequence, Union

from .config import HarnessConfig
from .exceptions import InvocationError
from .exec.guard import TerminationGuard
from .exec.output_capture import OutputCapture
from .exec.tool import Tool
from .loader import LoadedEntryPoint, ToolLoader


logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


@dataclass
class ToolResult:
    """Result of one tool run."""
    name: str
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    error: Optional[Dict[str, Any]] = None

    def to_state_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dict."""
        result: Dict[str, Any] = {
            "name": self.name,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_ms": self.duration_ms,
        }
        if self.error:
            result["error"] = self.error
        return result


class Sandbox:
    """
    Owns the process-wide streams and termination policy while tools run.

    Use as a context manager; leaving the block restores the original
    streams and exit functions. Only one sandbox can be active per
    ``system`` module.
    """

    def __init__(
        self,
        config: Optional[HarnessConfig] = None,
        system: ModuleType = sys,
        process: Optional[ModuleType] = os,
        loader: Optional[ToolLoader] = None,
    ):
        """
        Initialize sandbox.

        Args:
            config: Harness settings (default: HarnessConfig())
            system: Module owning exit and the standard streams (default: sys)
            process: Module owning _exit (default: os; ignored unless
                config.intercept_process_exit)
            loader: Loader used for tool archives
        """
        self.config = config or HarnessConfig()
        self.system = system
        self.loader = loader or ToolLoader()
        self.capture = OutputCapture(system, encoding=self.config.encoding)
        self.guard = TerminationGuard(
            self.capture,
            system=system,
            process=process if self.config.intercept_process_exit else None,
        )
        self.tools: Dict[str, Tool] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> 'Sandbox':
        self.install()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.teardown()

    def install(self) -> None:
        """Redirect output first, then lock it in with the guard."""
        self.capture.install()
        try:
            self.guard.install()
        except BaseException:
            self.capture.uninstall()
            raise
        logger.debug("Sandbox installed")

    def teardown(self) -> None:
        if self.guard.installed:
            self.guard.uninstall()
        self.capture.uninstall()
        self.loader.release_paths()
        logger.debug("Sandbox removed")

    def load(self, location: Union[str, Path], name: Optional[str] = None) -> Tool:
        """Load a tool archive and register it under ``name``."""
        entry_point = self.loader.load(location)
        return self.add(entry_point, name or Path(location).stem)

    def add(self, entry_point: LoadedEntryPoint, name: Optional[str] = None) -> Tool:
        """Register an already resolved entry point."""
        tool = Tool(
            entry_point,
            system=self.system,
            guard=self.guard,
            trust_bare_exit=self.config.trust_bare_exit,
            name=name,
        )
        self.tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name} ({entry_point.origin})")
        return tool

    def load_configured(self) -> Dict[str, Tool]:
        """Load every tool listed in the config."""
        for tool_config in self.config.tools.values():
            self.load(tool_config.path, tool_config.name)
        return dict(self.tools)

    def run(
        self,
        tool: Union[Tool, str],
        args: Sequence[str] = (),
        timeout_sec: Optional[float] = None,
    ) -> ToolResult:
        """
        Run a tool and collect its exit code and output.

        Raises:
            KeyError: unknown tool name
            InvocationError: the tool failed; captured output is attached
        """
        if isinstance(tool, str):
            tool = self.tools[tool]
        if not self.guard.installed:
            raise RuntimeError("sandbox is not installed")
        if timeout_sec is None:
            timeout_sec = self.config.timeout_sec

        with self._lock:
            self.capture.clear()
            start_time = time.time()
            try:
                if timeout_sec is None:
                    exit_code = tool.run(args)
                    error = None
                else:
                    exit_code, error = self._run_with_timeout(tool, args, timeout_sec)
            except InvocationError as e:
                e.stdout = self.capture.drain_output()
                e.stderr = self.capture.drain_error()
                self.capture.clear()
                logger.debug(f"Tool {tool.name} failed: {e}")
                raise
            duration_ms = int((time.time() - start_time) * 1000)

            result = ToolResult(
                name=tool.name,
                exit_code=exit_code,
                stdout=self.capture.drain_output(),
                stderr=self.capture.drain_error(),
                duration_ms=duration_ms,
                error=error,
            )
            self.capture.clear()

        logger.debug(f"Tool {tool.name} exited with {exit_code} in {duration_ms} ms")
        return result

    def _run_with_timeout(self, tool: Tool, args: Sequence[str], timeout_sec: float):
        """
        Run on a daemon worker and stop waiting after ``timeout_sec``.

        An abandoned tool keeps running and may still write into the
        buffers.
        """
        outcome: Dict[str, Any] = {}

        def target():
            try:
                outcome["exit_code"] = tool.run(args)
            except BaseException as e:
                outcome["error"] = e

        worker = threading.Thread(target=target, name=f"tool-{tool.name}", daemon=True)
        worker.start()
        worker.join(timeout_sec)

        if worker.is_alive():
            logger.info(f"Tool {tool.name} timed out after {timeout_sec} seconds")
            return TIMEOUT_EXIT_CODE, {
                "type": "timeout",
                "message": f"Tool timed out after {timeout_sec} seconds",
                "context": {"timeout_sec": timeout_sec},
            }
        if "error" in outcome:
            raise outcome["error"]
        return outcome["exit_code"], None
