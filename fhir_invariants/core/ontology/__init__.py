"""Core ontology types for invariant validation."""

from .types import (
    Severity,
    RuleOrigin,
    PrimitiveKind,
    TYPE_NAME_KINDS,
    CHOICE_TYPE_SUFFIXES,
    kind_of_type_name,
    kind_of_value,
)
from .resource import ResourceNode, build_tree

__all__ = [
    # Types
    "Severity",
    "RuleOrigin",
    "PrimitiveKind",
    "TYPE_NAME_KINDS",
    "CHOICE_TYPE_SUFFIXES",
    "kind_of_type_name",
    "kind_of_value",
    # Instance tree
    "ResourceNode",
    "build_tree",
]
