"""
Validation outcome: ordered issues with derived severity counts.

Provides the per-run report plus an aggregation helper used when many
independent runs are summarized together.
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, Field

from fhir_invariants.core.ontology.types import Severity


class Issue(BaseModel):
    """A single validation issue."""

    severity: Severity
    """Warning, Error (rule evaluated to false) or Fatal (rule could not be checked)."""

    code: str
    """Key of the rule that produced the issue."""

    diagnostics: str
    """Human-readable diagnostic text."""

    path: str
    """Path of the node the rule was evaluated on."""

    expression: str | None = None
    """Expression text of the rule, when there is one."""


class Outcome(BaseModel):
    """Ordered issues of one validation run.

    Counts are always recomputed from ``issues``.
    """

    issues: list[Issue] = Field(default_factory=list)

    def add(self, issue: Issue) -> None:
        """Append an issue, preserving emission order."""
        self.issues.append(issue)

    def count(self, severity: Severity) -> int:
        return sum(1 for issue in self.issues if issue.severity == severity)

    @property
    def errors(self) -> int:
        return self.count(Severity.ERROR)

    @property
    def fatals(self) -> int:
        return self.count(Severity.FATAL)

    @property
    def warnings(self) -> int:
        return self.count(Severity.WARNING)

    @property
    def is_valid(self) -> bool:
        """Valid iff there are no Error or Fatal issues."""
        return self.errors + self.fatals == 0

    def codes(self) -> list[str]:
        return [issue.code for issue in self.issues]

    def summary(self) -> dict[str, int | bool]:
        return {
            "issues": len(self.issues),
            "errors": self.errors,
            "fatals": self.fatals,
            "warnings": self.warnings,
            "valid": self.is_valid,
        }


def aggregate_issue_codes(
    outcomes: Iterable[Outcome], include_warnings: bool = False
) -> dict[str, int]:
    """Count occurrences of each issue code across many runs.

    Args:
        outcomes: Outcomes of independent validation runs.
        include_warnings: Also count Warning issues.

    Returns:
        Mapping of issue code to occurrence count, in first-seen order.
    """
    counts: dict[str, int] = {}
    for outcome in outcomes:
        for issue in outcome.issues:
            if issue.severity == Severity.WARNING and not include_warnings:
                continue
            counts[issue.code] = counts.get(issue.code, 0) + 1
    return counts
