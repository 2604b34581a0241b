"""
Invocation wrapper for in-process tools.

Runs a tool's entry point once and reduces what happened to an exit code,
the same way a shell reduces a finished process to its status.
"""

import logging
import sys
from contextlib import nullcontext
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import Any, List, Optional, Sequence, Union

from ..exceptions import InvocationError, PolicyViolation, StatusSignal
from ..loader import LoadedEntryPoint, ToolLoader
from .guard import TerminationGuard


logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    """How a tool run ended."""
    COMPLETED = "completed"
    POLICY_VIOLATION = "policy_violation"
    FAULT = "fault"


@dataclass(frozen=True)
class Outcome:
    """Result of one tool invocation."""
    kind: OutcomeKind
    exit_code: Optional[int] = None
    cause: Optional[BaseException] = None

    @classmethod
    def completed(cls, exit_code: int) -> 'Outcome':
        return cls(OutcomeKind.COMPLETED, exit_code=exit_code)

    @classmethod
    def policy_violation(cls, cause: PolicyViolation) -> 'Outcome':
        return cls(OutcomeKind.POLICY_VIOLATION, cause=cause)

    @classmethod
    def fault(cls, cause: BaseException) -> 'Outcome':
        return cls(OutcomeKind.FAULT, cause=cause)


def exit_code_of(exc: SystemExit) -> int:
    """Exit status the interpreter would report for an uncaught SystemExit."""
    code = exc.code
    if code is None:
        return 0
    if isinstance(code, int):
        return int(code)
    return 1


class Tool:
    """
    A loaded tool, ready to run.

    Exit requests become exit codes; everything else that goes wrong becomes
    an InvocationError. A guard, when given, is checked after every run so a
    violation the tool swallowed is still reported.
    """

    def __init__(
        self,
        entry_point: LoadedEntryPoint,
        system: ModuleType = sys,
        guard: Optional[TerminationGuard] = None,
        trust_bare_exit: bool = True,
        name: Optional[str] = None,
    ):
        """
        Initialize tool.

        Args:
            entry_point: Resolved entry point
            system: Module whose stderr receives exit messages (default: sys)
            guard: Installed termination guard, if any
            trust_bare_exit: Treat a SystemExit raised without the guard as an exit request
            name: Display name (default: the entry-point symbol)
        """
        self.entry_point = entry_point
        self.system = system
        self.guard = guard
        self.trust_bare_exit = trust_bare_exit
        self.name = name or entry_point.symbol

    @classmethod
    def load(
        cls,
        location: Union[str, Path],
        loader: Optional[ToolLoader] = None,
        **kwargs: Any,
    ) -> 'Tool':
        """Load a tool from an archive or directory with a manifest."""
        entry_point = (loader or ToolLoader()).load(location)
        return cls(entry_point, **kwargs)

    def invoke(self, args: Sequence[str] = ()) -> Outcome:
        """Run the entry point once and classify how it ended."""
        args_list: List[str] = [str(arg) for arg in args]
        watch = self.guard.watch() if self.guard is not None else nullcontext([])

        with watch as violations:
            outcome = self._call(args_list)

            if self.guard is not None and outcome.kind != OutcomeKind.POLICY_VIOLATION:
                try:
                    self.guard.verify()
                except PolicyViolation as e:
                    outcome = Outcome.policy_violation(e)
                else:
                    if violations:
                        outcome = Outcome.policy_violation(violations[0])

        logger.debug(f"{self.name} finished: {outcome.kind.value} {outcome.exit_code}")
        return outcome

    def _call(self, args_list: List[str]) -> Outcome:
        try:
            self.entry_point(args_list)
            return Outcome.completed(0)
        except StatusSignal as signal:
            self._report_exit_message(signal.message)
            return Outcome.completed(signal.code)
        except SystemExit as e:
            if not self.trust_bare_exit:
                return Outcome.fault(e)
            if not isinstance(e.code, (int, type(None))):
                self._report_exit_message(str(e.code))
            return Outcome.completed(exit_code_of(e))
        except PolicyViolation as e:
            return Outcome.policy_violation(e)
        except Exception as e:
            return Outcome.fault(e)

    def run(self, args: Sequence[str] = ()) -> int:
        """
        Run the tool and return its exit code.

        Raises:
            InvocationError: the tool failed, or tried to break out of the sandbox
        """
        outcome = self.invoke(args)
        if outcome.kind == OutcomeKind.COMPLETED:
            return outcome.exit_code
        raise InvocationError(self.name, outcome.cause) from outcome.cause

    def _report_exit_message(self, message: Optional[str]) -> None:
        if message is None:
            return
        stream = getattr(self.system, "stderr", None)
        if stream is not None:
            print(message, file=stream)
