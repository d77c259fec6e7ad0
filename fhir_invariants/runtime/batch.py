"""
Batch validation of many independent instances.

Each instance gets its own tree and its own Outcome; the only shared state
is the frozen constraint repository, so instances are validated on a thread
pool and merged afterwards in input order.
"""

from __future__ import annotations

from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor

import structlog
from pydantic import BaseModel, Field

from fhir_invariants.compiler import CompiledExpression
from fhir_invariants.core.config import Settings, get_settings
from fhir_invariants.core.ontology.resource import ResourceNode
from fhir_invariants.core.ontology.types import Severity
from .evaluator import InvariantEvaluator
from .outcome import Issue, Outcome, aggregate_issue_codes

logger = structlog.get_logger(__name__)


class InstanceResult(BaseModel):
    """Validation result of one named instance."""

    name: str
    outcome: Outcome
    reported_issues: list[Issue] = Field(default_factory=list)
    """Issues left after removing expected diagnostics."""

    @property
    def failed(self) -> bool:
        return any(
            issue.severity in (Severity.ERROR, Severity.FATAL)
            for issue in self.reported_issues
        )


class BatchReport(BaseModel):
    """Summary of one batch run.

    ``failed_codes`` counts the Error and Fatal codes left after the
    expected-diagnostics allowlist is applied; allowlisted issues are not
    tallied even on instances that fail for another reason.
    """

    instance_count: int = 0
    failed_count: int = 0
    skipped: list[str] = Field(default_factory=list)
    failed_codes: dict[str, int] = Field(default_factory=dict)
    results: list[InstanceResult] = Field(default_factory=list)

    @property
    def failed_instances(self) -> list[str]:
        return [result.name for result in self.results if result.failed]

    def describe(self) -> str:
        text = f"Validation failed in {self.failed_count} of {self.instance_count} examples"
        if self.failed_codes:
            codes = ", ".join(f"{code} ({count})" for code, count in self.failed_codes.items())
            text += f"\nIssues with Invariant: {codes}"
        return text


class BatchValidator:
    """Validates a corpus of instances and summarizes failing rule codes.

    ``expected_diagnostics`` is an allowlist of known false positives: an
    issue whose diagnostics or expression text is on it is not reported.
    """

    def __init__(
        self,
        evaluator: InvariantEvaluator | None = None,
        settings: Settings | None = None,
        *,
        expected_diagnostics: Iterable[str] | None = None,
        skip_instance_patterns: Iterable[str] | None = None,
        max_workers: int | None = None,
    ):
        settings = settings or get_settings()
        self.evaluator = evaluator or InvariantEvaluator(settings=settings)
        self.expected_diagnostics = set(
            settings.expected_diagnostics if expected_diagnostics is None else expected_diagnostics
        )
        self.skip_instance_patterns = list(
            settings.skip_instance_patterns if skip_instance_patterns is None
            else skip_instance_patterns
        )
        self.max_workers = max_workers or settings.max_workers

    def should_skip(self, name: str) -> bool:
        return any(pattern in name for pattern in self.skip_instance_patterns)

    def is_expected(self, issue: Issue) -> bool:
        return (
            issue.diagnostics in self.expected_diagnostics
            or (issue.expression is not None and issue.expression in self.expected_diagnostics)
        )

    def run(self, instances: Iterable[tuple[str, ResourceNode]]) -> BatchReport:
        """Validate every (name, tree) pair and build the report."""
        report = BatchReport()
        pending: list[tuple[str, ResourceNode]] = []
        for name, tree in instances:
            if self.should_skip(name):
                report.skipped.append(name)
                continue
            pending.append((name, tree))

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            outcomes = list(pool.map(lambda item: self.evaluator.validate(item[1]), pending))

        # Scoped to this run: each rule is inspected at most once
        checked_rules: set[tuple[str, str]] = set()
        for (name, tree), outcome in zip(pending, outcomes):
            reported = [issue for issue in outcome.issues if not self.is_expected(issue)]
            result = InstanceResult(name=name, outcome=outcome, reported_issues=reported)
            report.results.append(result)
            for type_name in _type_names(tree):
                self._inspect_rules(type_name, checked_rules)

            if reported:
                logger.info(
                    "batch.instance.issues",
                    instance=name,
                    issues=[f"{i.code} ({i.severity.value}): {i.diagnostics}" for i in reported],
                )
            if result.failed:
                report.failed_count += 1

        report.instance_count = len(pending)
        report.failed_codes = aggregate_issue_codes(
            Outcome(issues=result.reported_issues) for result in report.results
        )
        logger.info(
            "batch.complete",
            instances=report.instance_count,
            failed=report.failed_count,
            skipped=len(report.skipped),
            failed_codes=report.failed_codes,
        )
        return report

    def _inspect_rules(self, type_name: str, checked_rules: set[tuple[str, str]]) -> None:
        """Log, once per run, rules whose expressions use notable features."""
        repository = self.evaluator.repository
        for rule in repository.rules_for(type_name):
            if (type_name, rule.key) in checked_rules:
                continue
            checked_rules.add((type_name, rule.key))
            compiled = repository.compiled_for(type_name, rule)
            if not isinstance(compiled, CompiledExpression):
                continue
            if compiled.features or compiled.type_kinds:
                logger.debug(
                    "batch.rule.features",
                    type=type_name,
                    key=rule.key,
                    expression=rule.expression,
                    features=sorted(f.value for f in compiled.features),
                    type_kinds=sorted(k.value for k in compiled.type_kinds),
                )


def _type_names(root: ResourceNode) -> list[str]:
    """Distinct type names in a tree, in pre-order of first appearance."""
    seen: dict[str, None] = {}
    stack = [root]
    while stack:
        node = stack.pop()
        seen.setdefault(node.type_name, None)
        stack.extend(reversed(list(node.iter_children())))
    return list(seen)
