"""Pytest fixtures for test suite."""

import pytest
from typing import Any, Callable

from fhir_invariants.compiler import compile_expression
from fhir_invariants.core.config import Settings
from fhir_invariants.core.ontology import ResourceNode, Severity, build_tree
from fhir_invariants.rule_service import ConstraintRepository, ConstraintRule, build_repository
from fhir_invariants.runtime import EvaluationContext, InvariantEvaluator, evaluate_expression


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings that ignore any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def default_repository(settings: Settings) -> ConstraintRepository:
    """Frozen repository with the packaged rules."""
    return build_repository(settings)


@pytest.fixture
def make_repository() -> Callable[..., ConstraintRepository]:
    """Build a repository from {type: [(key, expression[, severity])]}."""

    def factory(rules: dict[str, list[tuple]], freeze: bool = True) -> ConstraintRepository:
        repository = ConstraintRepository()
        for type_name, entries in rules.items():
            for entry in entries:
                key, expression = entry[0], entry[1]
                severity = entry[2] if len(entry) > 2 else Severity.ERROR
                repository.add_rule(
                    type_name,
                    ConstraintRule(key=key, expression=expression, severity=severity),
                )
        if freeze:
            repository.freeze()
        return repository

    return factory


@pytest.fixture
def make_evaluator(settings: Settings) -> Callable[[ConstraintRepository], InvariantEvaluator]:
    def factory(repository: ConstraintRepository, **kwargs: Any) -> InvariantEvaluator:
        return InvariantEvaluator(repository, settings=settings, **kwargs)

    return factory


@pytest.fixture
def run() -> Callable[..., list[Any]]:
    """Evaluate an expression against a node (and its ancestors)."""

    def evaluate(
        expression: str, node: ResourceNode, ancestors: tuple[ResourceNode, ...] = ()
    ) -> list[Any]:
        context = EvaluationContext(node=node, ancestors=ancestors)
        return evaluate_expression(compile_expression(expression), context)

    return evaluate


# =============================================================================
# Instance Fixtures
# =============================================================================


@pytest.fixture
def patient() -> ResourceNode:
    """Patient with one complete and one empty contact."""
    return build_tree("Patient", {
        "id": "example",
        "active": True,
        "name": [{"_type": "HumanName", "family": "Chalmers", "given": ["Peter", "James"]}],
        "contact": [
            {
                "name": {"_type": "HumanName", "family": "du Marché"},
                "relationship": {"_type": "CodeableConcept", "text": "partner"},
            },
            {
                "relationship": {"_type": "CodeableConcept", "text": "friend"},
            },
        ],
        "address": [{"_type": "Address", "city": "PleasantVille", "postalCode": "3999"}],
    })


@pytest.fixture
def empty_node() -> ResourceNode:
    """A node with no children, for literal-only expressions."""
    return ResourceNode(type_name="Basic").assign_paths()


@pytest.fixture
def observation() -> ResourceNode:
    """Observation carrying both a value and a dataAbsentReason."""
    return build_tree("Observation", {
        "status": "final",
        "valueQuantity": {"_type": "Quantity", "value": 5.4, "code": "mg"},
        "dataAbsentReason": {"_type": "CodeableConcept", "text": "masked"},
    })
