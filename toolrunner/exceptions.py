"""Tool runner exceptions."""

from typing import Any, List, Optional
from dataclasses import dataclass


@dataclass
class ValidationError:
    """Single validation error."""
    message: str
    path: str = ""
    exit_code: int = 2


class ConfigValidationError(Exception):
    """Raised when harness configuration validation fails.

    The config loader collects every problem before raising, so the CLI can
    report them together and map to the validation exit code.
    """

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        self.exit_code = 2

        messages = []
        for error in errors:
            messages.append(f"Validation error: {error.message}")

        super().__init__("\n".join(messages))


class StatusSignal(SystemExit):
    """
    Intercepted termination request.

    Normalizes the requested value the way the interpreter does for
    ``sys.exit``: None means 0, integers pass through, anything else is a
    message and means 1. ``code`` and ``message`` are read-only.
    """

    def __init__(self, requested: Any = None):
        if requested is None:
            code = 0
            message = None
        elif isinstance(requested, int):
            code = int(requested)
            message = None
        else:
            code = 1
            message = str(requested)

        super().__init__(code)
        object.__setattr__(self, "message", message)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in ("code", "message"):
            raise AttributeError(f"StatusSignal.{name} is read-only")
        super().__setattr__(name, value)

    def __repr__(self) -> str:
        return f"StatusSignal(code={self.code!r})"


class PolicyViolation(Exception):
    """Raised when code tries to replace the termination policy or captured streams."""

    def __init__(self, action: Any, detail: str = ""):
        self.action = action
        self.detail = detail
        message = f"{getattr(action, 'value', action)} isn't allowed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class LoadError(Exception):
    """Raised when a tool's manifest or entry point can't be resolved."""

    def __init__(self, message: str, location: Optional[str] = None):
        self.location = location
        if location:
            message = f"{location}: {message}"
        super().__init__(message)


class InvocationError(Exception):
    """
    Raised when a tool fails with anything other than a termination request.

    The original exception is available as ``cause`` (and ``__cause__``).
    The sandbox attaches whatever the tool wrote before failing.
    """

    def __init__(self, tool: str, cause: BaseException):
        self.tool = tool
        self.cause = cause
        self.stdout: Optional[str] = None
        self.stderr: Optional[str] = None
        super().__init__(f"{tool} raised {type(cause).__name__}: {cause}")

    @property
    def is_policy_violation(self) -> bool:
        return isinstance(self.cause, PolicyViolation)
