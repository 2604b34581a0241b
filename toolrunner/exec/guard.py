"""
Termination guard for in-process tool runs.

Turns every attempt to end the process into a StatusSignal and stops any
code from replacing the captured output streams or the guard itself.
"""

import logging
import os
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from types import ModuleType
from typing import Any, Dict, Iterator, List, Optional, Type

from ..exceptions import PolicyViolation, StatusSignal
from .output_capture import OutputCapture


logger = logging.getLogger(__name__)

_MISSING = object()


class RestrictedAction(str, Enum):
    """Actions the guard refuses once installed."""
    REPLACE_TERMINATION_POLICY = "replace_termination_policy"
    REPLACE_OUTPUT_STREAMS = "replace_output_streams"


STREAM_ATTRIBUTES = ("stdout", "stderr")


@dataclass
class _Protection:
    """Guarded module with the values the guard installed on it."""
    module: ModuleType
    original_class: Type[ModuleType]
    installed: Dict[str, Any]
    originals: Dict[str, Any] = field(default_factory=dict)
    guarded_class: Optional[Type[ModuleType]] = None


class TerminationGuard:
    """
    Process-wide termination and stream policy.

    ``system`` is the module that owns ``exit`` and the standard streams,
    ``process`` the one that owns ``_exit`` (pass None to leave it alone).
    Both default to the real ``sys`` and ``os`` modules; tests substitute
    stand-in modules.
    """

    def __init__(
        self,
        capture: OutputCapture,
        system: ModuleType = sys,
        process: Optional[ModuleType] = os,
    ):
        self.capture = capture
        self.system = system
        self.process = process
        self._protections: List[_Protection] = []
        self._local = threading.local()

    @property
    def installed(self) -> bool:
        return bool(self._protections)

    def install(self) -> None:
        """
        Install the policy.

        Output capture must already be installed: the streams it set up are
        the ones the guard keeps in place.
        """
        if self.installed:
            self.check_policy_violation(
                RestrictedAction.REPLACE_TERMINATION_POLICY, "guard is already installed"
            )
        if not self.capture.installed or self.capture.system is not self.system:
            raise RuntimeError("output capture must be installed before the termination guard")

        self._protect(self.system, {"exit": self.intercept_termination}, STREAM_ATTRIBUTES)
        if self.process is not None:
            try:
                self._protect(self.process, {"_exit": self.intercept_termination}, ())
            except PolicyViolation:
                self.uninstall()
                raise

        logger.debug(f"Termination guard installed on {self.system.__name__}")

    def _protect(self, module: ModuleType, hooks: Dict[str, Any], keep: tuple) -> None:
        originals = {name: module.__dict__.get(name, _MISSING) for name in hooks}
        for name, hook in hooks.items():
            setattr(module, name, hook)

        installed = dict(hooks)
        for name in keep:
            installed[name] = module.__dict__.get(name, _MISSING)

        protection = _Protection(
            module=module,
            original_class=type(module),
            installed=installed,
            originals=originals,
        )
        protection.guarded_class = self._guarded_class(protection)
        module.__class__ = protection.guarded_class
        self._protections.append(protection)

    def _guarded_class(self, protection: _Protection) -> Type[ModuleType]:
        guard = self
        base = protection.original_class

        def __setattr__(module, name, value):
            guard._check_attribute(protection, name)
            base.__setattr__(module, name, value)

        def __delattr__(module, name):
            guard._check_attribute(protection, name)
            base.__delattr__(module, name)

        return type(f"Guarded{base.__name__}", (base,), {
            "__setattr__": __setattr__,
            "__delattr__": __delattr__,
        })

    def _check_attribute(self, protection: _Protection, name: str) -> None:
        if name == "__class__" or name in protection.installed:
            self.check_policy_violation(
                self.action_for(name), f"{protection.module.__name__}.{name}"
            )

    @staticmethod
    def action_for(name: str) -> RestrictedAction:
        if name in STREAM_ATTRIBUTES:
            return RestrictedAction.REPLACE_OUTPUT_STREAMS
        return RestrictedAction.REPLACE_TERMINATION_POLICY

    def intercept_termination(self, code: Any = None) -> None:
        """Replacement for ``sys.exit`` and ``os._exit``: unwind instead of exiting."""
        raise StatusSignal(code)

    @contextmanager
    def watch(self) -> Iterator[List[PolicyViolation]]:
        """
        Collect the violations raised on the current thread inside the block.

        Each invocation watches on its own thread, so a tool abandoned after
        a timeout can't add violations to the run that follows it. The list
        is dropped when the block ends.
        """
        previous = getattr(self._local, "violations", None)
        violations: List[PolicyViolation] = []
        self._local.violations = violations
        try:
            yield violations
        finally:
            self._local.violations = previous

    def check_policy_violation(self, action: RestrictedAction, detail: str = "") -> None:
        """Record and raise a violation of ``action``."""
        violation = PolicyViolation(action, detail)
        watching = getattr(self._local, "violations", None)
        if watching is not None:
            watching.append(violation)
        logger.debug(f"Policy violation: {violation}")
        raise violation

    def verify(self) -> None:
        """
        Check that nothing slipped past the attribute guard.

        Writes through ``__dict__`` or ``object.__setattr__`` bypass the
        guarded class; any such change is reverted and reported.
        """
        tampered: List[str] = []
        for protection in self._protections:
            module = protection.module
            if type(module) is not protection.guarded_class:
                object.__setattr__(module, "__class__", protection.guarded_class)
                tampered.append(f"{module.__name__}.__class__")

            for name, value in protection.installed.items():
                if module.__dict__.get(name, _MISSING) is not value:
                    if value is _MISSING:
                        module.__dict__.pop(name, None)
                    else:
                        module.__dict__[name] = value
                    tampered.append(f"{module.__name__}.{name}")

        if tampered:
            names = [name.rsplit(".", 1)[-1] for name in tampered]
            action = (
                RestrictedAction.REPLACE_OUTPUT_STREAMS
                if all(name in STREAM_ATTRIBUTES for name in names)
                else RestrictedAction.REPLACE_TERMINATION_POLICY
            )
            self.check_policy_violation(action, f"bypassed guard on {', '.join(tampered)}")

    def uninstall(self) -> None:
        """
        Remove the policy and restore the original hooks.

        Only for harness teardown.
        """
        for protection in reversed(self._protections):
            module = protection.module
            object.__setattr__(module, "__class__", protection.original_class)
            for name, value in protection.originals.items():
                if value is _MISSING:
                    module.__dict__.pop(name, None)
                else:
                    setattr(module, name, value)
        self._protections = []

        logger.debug(f"Termination guard removed from {self.system.__name__}")
