"""
Run command-line tools in-process.

Captures their output and turns their exit requests into exit codes instead
of letting them end the host process.
"""

from .exceptions import (
    ConfigValidationError,
    InvocationError,
    LoadError,
    PolicyViolation,
    StatusSignal,
)
from .exec import OutputCapture, TerminationGuard, Tool
from .loader import LoadedEntryPoint, ToolLoader
from .sandbox import Sandbox, ToolResult

__version__ = "0.1.0"

__all__ = [
    "ConfigValidationError",
    "InvocationError",
    "LoadError",
    "PolicyViolation",
    "StatusSignal",
    "OutputCapture",
    "TerminationGuard",
    "Tool",
    "LoadedEntryPoint",
    "ToolLoader",
    "Sandbox",
    "ToolResult",
]
