"""
Execution module for the tool runner.
Handles output capture, the termination guard, and tool invocation.
"""

from .output_capture import OutputCapture, CapturedStream
from .guard import TerminationGuard, RestrictedAction
from .tool import Tool, Outcome, OutcomeKind

__all__ = [
    "OutputCapture",
    "CapturedStream",
    "TerminationGuard",
    "RestrictedAction",
    "Tool",
    "Outcome",
    "OutcomeKind",
]
