"""Invariant constraint validation for FHIR resource instances."""

from fhir_invariants.core import CompileError, ConfigError, EvaluationError, Settings, get_settings
from fhir_invariants.core.ontology import ResourceNode, Severity, build_tree
from fhir_invariants.compiler import CompiledExpression, compile_expression
from fhir_invariants.rule_service import (
    ConstraintRepository,
    ConstraintRule,
    ProfileDifferential,
    build_repository,
    get_repository,
)
from fhir_invariants.runtime import (
    InvariantEvaluator,
    Issue,
    Outcome,
    aggregate_issue_codes,
    validate_instance,
)

__version__ = "0.1.0"

__all__ = [
    "CompileError",
    "ConfigError",
    "EvaluationError",
    "Settings",
    "get_settings",
    "ResourceNode",
    "Severity",
    "build_tree",
    "CompiledExpression",
    "compile_expression",
    "ConstraintRepository",
    "ConstraintRule",
    "ProfileDifferential",
    "build_repository",
    "get_repository",
    "InvariantEvaluator",
    "Issue",
    "Outcome",
    "aggregate_issue_codes",
    "validate_instance",
]
