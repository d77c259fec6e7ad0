"""Exception types raised by the invariant engine.

Only ``ConfigError`` is expected to escape to callers, and only while the
constraint repository is being built. Compile and evaluation faults are
turned into Fatal issues by the evaluator.
"""

from __future__ import annotations


class InvariantEngineError(Exception):
    """Base class for all engine errors."""


class ConfigError(InvariantEngineError):
    """Raised when a rule definition or profile cannot be registered."""


class CompileError(InvariantEngineError):
    """Raised when an expression cannot be parsed.

    Carries the raw expression text so the evaluator can report it.
    """

    def __init__(self, text: str, reason: str, position: int | None = None):
        self.text = text
        self.reason = reason
        self.position = position
        where = f" at position {position}" if position is not None else ""
        super().__init__(f"{reason}{where} in expression '{text}'")


class EvaluationError(InvariantEngineError):
    """Raised when a compiled expression cannot be evaluated on a node."""
