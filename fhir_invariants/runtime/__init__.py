"""
Runtime package for invariant validation.

Provides:
- IR interpretation of compiled expressions
- Depth-first invariant evaluation of instance trees
- Outcomes with graded severities
- Batch validation of independent instances
"""

from fhir_invariants.runtime.context import EvaluationContext, WELL_KNOWN_CONSTANTS
from fhir_invariants.runtime.interpreter import (
    Interpreter,
    evaluate_expression,
    predicate_result,
)
from fhir_invariants.runtime.outcome import Issue, Outcome, aggregate_issue_codes
from fhir_invariants.runtime.evaluator import InvariantEvaluator, validate_instance
from fhir_invariants.runtime.batch import BatchReport, BatchValidator, InstanceResult

__all__ = [
    # Interpreter
    "EvaluationContext",
    "WELL_KNOWN_CONSTANTS",
    "Interpreter",
    "evaluate_expression",
    "predicate_result",
    # Evaluator
    "InvariantEvaluator",
    "validate_instance",
    # Outcome
    "Issue",
    "Outcome",
    "aggregate_issue_codes",
    # Batch
    "BatchValidator",
    "BatchReport",
    "InstanceResult",
]
