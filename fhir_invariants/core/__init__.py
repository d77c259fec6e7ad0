"""Core package - configuration, errors, logging, and domain types."""

from .config import Settings, get_settings
from .errors import CompileError, ConfigError, EvaluationError, InvariantEngineError
from .logging import configure_logging

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "configure_logging",
    # Errors
    "InvariantEngineError",
    "ConfigError",
    "CompileError",
    "EvaluationError",
]
