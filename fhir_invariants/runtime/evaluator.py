"""
Invariant evaluator.

Walks an instance tree depth-first, pre-order, children in declaration
order. At every node it evaluates the rules registered for the node's type
and records one issue per failing or uncheckable rule. A broken rule never
stops the walk.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any

import structlog

from fhir_invariants.core.config import Settings, get_settings
from fhir_invariants.core.errors import CompileError, EvaluationError
from fhir_invariants.core.ontology.resource import ResourceNode
from fhir_invariants.core.ontology.types import Severity
from fhir_invariants.rule_service.loader import ConstraintRule
from fhir_invariants.rule_service.repository import ConstraintRepository, get_repository
from .context import WELL_KNOWN_CONSTANTS, EvaluationContext
from .interpreter import evaluate_expression, predicate_result
from .outcome import Issue, Outcome

logger = structlog.get_logger(__name__)

DEADLINE_CODE = "deadline-exceeded"

# Faults raised while evaluating a rule that become Fatal issues
_EVALUATION_FAULTS = (EvaluationError, ArithmeticError, TypeError, ValueError, RecursionError)


class InvariantEvaluator:
    """Validates instance trees against a constraint repository."""

    def __init__(
        self,
        repository: ConstraintRepository | None = None,
        *,
        constants: Mapping[str, Any] | None = None,
        deadline_seconds: float | None = None,
        settings: Settings | None = None,
    ):
        """Initialize the evaluator.

        Args:
            repository: Rules to apply (uses the global repository if not provided)
            constants: Extra ``%name`` constants for expressions
            deadline_seconds: Optional time budget for one validation run
            settings: Settings supplying constants and deadline defaults
        """
        settings = settings or get_settings()
        self.repository = repository or get_repository()
        self.constants: dict[str, Any] = {
            **WELL_KNOWN_CONSTANTS,
            **settings.constants,
            **(constants or {}),
        }
        self.deadline_seconds = (
            deadline_seconds if deadline_seconds is not None else settings.deadline_seconds
        )

    def validate(self, root: ResourceNode) -> Outcome:
        """Validate one instance tree.

        Always returns a complete Outcome; rule failures and faults are
        reported as issues.
        """
        outcome = Outcome()
        deadline = None
        if self.deadline_seconds is not None:
            deadline = time.monotonic() + self.deadline_seconds

        # Explicit stack of (node, ancestors) keeps pre-order without recursion
        stack: list[tuple[ResourceNode, tuple[ResourceNode, ...]]] = [(root, ())]
        visited = 0
        while stack:
            node, ancestors = stack.pop()
            if deadline is not None and time.monotonic() > deadline:
                outcome.add(Issue(
                    severity=Severity.FATAL,
                    code=DEADLINE_CODE,
                    diagnostics=f"{node.path}: validation stopped, deadline of "
                                f"{self.deadline_seconds}s exceeded",
                    path=node.path,
                ))
                logger.warning("evaluator.deadline_exceeded", path=node.path, visited=visited)
                break

            self._validate_node(node, ancestors, outcome)
            visited += 1

            child_ancestors = ancestors + (node,)
            for child in reversed(list(node.iter_children())):
                stack.append((child, child_ancestors))

        logger.debug(
            "evaluator.validate.complete",
            root=root.path,
            nodes=visited,
            **outcome.summary(),
        )
        return outcome

    def _validate_node(
        self,
        node: ResourceNode,
        ancestors: tuple[ResourceNode, ...],
        outcome: Outcome,
    ) -> None:
        rules = self.repository.rules_for(node.type_name)
        if not rules:
            return
        context = EvaluationContext(node=node, ancestors=ancestors, constants=self.constants)
        for rule in rules:
            issue = self._check_rule(node, rule, context)
            if issue is not None:
                outcome.add(issue)

    def _check_rule(
        self,
        node: ResourceNode,
        rule: ConstraintRule,
        context: EvaluationContext,
    ) -> Issue | None:
        compiled = self.repository.compiled_for(node.type_name, rule)
        if isinstance(compiled, CompileError):
            return Issue(
                severity=Severity.FATAL,
                code=rule.key,
                diagnostics=f"failed to compile: {rule.expression}",
                path=node.path,
                expression=rule.expression,
            )

        try:
            result = predicate_result(evaluate_expression(compiled, context))
        except _EVALUATION_FAULTS as e:
            logger.debug(
                "evaluator.rule.fault", key=rule.key, path=node.path, error=str(e)
            )
            return Issue(
                severity=Severity.FATAL,
                code=rule.key,
                diagnostics=f"{node.path}: unable to evaluate '{rule.expression}': {e}",
                path=node.path,
                expression=rule.expression,
            )

        if result is False:
            return Issue(
                severity=rule.severity,
                code=rule.key,
                diagnostics=f"{node.path}: {rule.expression}",
                path=node.path,
                expression=rule.expression,
            )
        return None


def validate_instance(
    root: ResourceNode, repository: ConstraintRepository | None = None
) -> Outcome:
    """Validate one instance tree with a fresh evaluator."""
    return InvariantEvaluator(repository).validate(root)
