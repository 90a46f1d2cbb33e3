"""Fault taxonomy for the Karel engine.

Every failure the engine can report is a `KarelFault` subclass carrying a
stable `code`, a human-readable message and (where known) the 1-based source
line that triggered it. Faults are ordinary values: callers convert them to
the structured error dict via `to_error()` and nothing here aborts the process.
"""

from typing import Any, Dict, Optional


class KarelFault(Exception):
    """Base class for validator and executor faults.

    Attributes:
        code: stable machine-readable identifier (e.g. ``WALL_COLLISION``)
        line: optional 1-based line in the student's program
        hint: optional short suggestion shown next to the message
    """

    code = "KAREL_FAULT"

    def __init__(self, message: str, *, line: Optional[int] = None, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.hint = hint

    def with_line(self, line: Optional[int]) -> "KarelFault":
        # Keep the innermost line if one was already attached
        if self.line is None:
            self.line = line
        return self

    def to_error(self) -> Dict[str, Any]:
        err: Dict[str, Any] = {"code": self.code, "message": self.message, "line": self.line}
        if self.hint:
            err["hint"] = self.hint
        return err


class SyntaxFault(KarelFault):
    code = "SYNTAX_ERROR"
    rule = "syntax"


class ValidationFault(KarelFault):
    """A construct or call name outside the allowlist."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, rule: str, line: Optional[int] = None, hint: Optional[str] = None):
        super().__init__(message, line=line, hint=hint)
        self.rule = rule

    def to_error(self) -> Dict[str, Any]:
        err = super().to_error()
        err["rule"] = self.rule
        return err


class WallCollision(KarelFault):
    code = "WALL_COLLISION"


class BoundaryViolation(KarelFault):
    code = "BOUNDARY_VIOLATION"


class NoBeeperPresent(KarelFault):
    code = "NO_BEEPER_PRESENT"


class BagEmpty(KarelFault):
    code = "BAG_EMPTY"


class RuntimeFault(KarelFault):
    """Any other exception raised while the program runs (NameError, RecursionError...)."""

    code = "RUNTIME_ERROR"


class StepLimitExceeded(KarelFault):
    code = "STEP_LIMIT"


class ExecutionTimeout(KarelFault):
    code = "TIMEOUT"
