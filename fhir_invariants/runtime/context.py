"""Evaluation context handed to compiled expressions."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from fhir_invariants.core.errors import EvaluationError
from fhir_invariants.core.ontology.resource import ResourceNode


WELL_KNOWN_CONSTANTS: dict[str, str] = {
    "ucum": "http://unitsofmeasure.org",
    "sct": "http://snomed.info/sct",
    "loinc": "http://loinc.org",
}


@dataclass(frozen=True)
class EvaluationContext:
    """Where a rule is being evaluated.

    ``ancestors`` runs from the root down to the parent of ``node``; it is
    empty when ``node`` is the root. Nodes never point to their parents, so
    this chain is the only way up the tree.
    """

    node: ResourceNode
    ancestors: tuple[ResourceNode, ...] = ()
    constants: Mapping[str, Any] = field(default_factory=lambda: dict(WELL_KNOWN_CONSTANTS))

    @property
    def root(self) -> ResourceNode:
        return self.ancestors[0] if self.ancestors else self.node

    @property
    def parent(self) -> ResourceNode | None:
        return self.ancestors[-1] if self.ancestors else None

    def resolve_constant(self, name: str) -> list[Any]:
        """Resolve a ``%name`` environment variable to a collection."""
        if name == "context":
            return [self.node]
        if name in ("resource", "rootResource"):
            return [self.root]
        if name in self.constants:
            value = self.constants[name]
            return list(value) if isinstance(value, (list, tuple)) else [value]
        raise EvaluationError(f"Unknown environment variable '%{name}'")
