"""Constraint rule models and YAML loaders.

Built-in definitions are packaged as YAML next to this module. Profile
differentials arrive already parsed (as models or plain mappings); the
engine never reads profile documents itself, but it can load a YAML list
of differentials for tests and harnesses.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from fhir_invariants.core.errors import ConfigError
from fhir_invariants.core.ontology.types import RuleOrigin, Severity


DEFAULT_RULES_FILE = Path(__file__).parent / "data" / "base_constraints.yaml"

_TYPE_SEGMENT = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_ELEMENT_SEGMENT = re.compile(r"^[A-Za-z][A-Za-z0-9_]*(\[x\])?$")


def _normalise_severity(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


# Accepts "Error", "error", " WARNING " ...
SeverityField = Annotated[Severity, BeforeValidator(_normalise_severity)]


class ConstraintRule(BaseModel):
    """A single invariant attached to a type.

    Immutable once created.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    expression: str
    severity: SeverityField = Severity.ERROR
    human: str | None = None
    origin: RuleOrigin = RuleOrigin.BASE
    scope: str | None = None
    """Element path the rule was declared on, when it was rewritten."""
    source: str | None = None
    """Profile url (or file) the rule came from."""


class BuiltinConstraint(BaseModel):
    """One packaged (path, key, severity, expression, description) entry."""

    path: str
    key: str
    severity: SeverityField = Severity.ERROR
    expression: str
    human: str | None = None


class ConstraintSpec(BaseModel):
    """A constraint declared on a differential element."""

    key: str
    severity: SeverityField = Severity.ERROR
    human: str | None = None
    expression: str | None = None


class DifferentialElement(BaseModel):
    """One customized element of a profile differential."""

    path: str
    constraints: list[ConstraintSpec] = Field(default_factory=list)


class ProfileDifferential(BaseModel):
    """The element customizations a profile adds to a base type."""

    type: str
    url: str | None = None
    name: str | None = None
    elements: list[DifferentialElement] = Field(default_factory=list)


# =============================================================================
# Path handling
# =============================================================================


def split_element_path(path: str, expected_type: str | None = None) -> tuple[str, str]:
    """Split an element path into (type, relative-path).

    ``Patient`` -> ``("Patient", "")``; ``Patient.contact`` ->
    ``("Patient", "contact")``.

    Raises:
        ConfigError: If the path has no usable type qualifier.
    """
    if not path or not path.strip():
        raise ConfigError("Element path is empty")

    segments = path.strip().split(".")
    type_name, relative = segments[0], segments[1:]
    if not _TYPE_SEGMENT.match(type_name):
        raise ConfigError(f"Element path '{path}' has no type qualifier")
    if expected_type is not None and type_name != expected_type:
        raise ConfigError(
            f"Element path '{path}' is not qualified by its type '{expected_type}'"
        )
    for segment in relative:
        if not _ELEMENT_SEGMENT.match(segment):
            raise ConfigError(f"Element path '{path}' has malformed segment '{segment}'")
    return type_name, ".".join(relative)


def scope_expression(relative_path: str, expression: str) -> str:
    """Scope an expression to every element matching ``relative_path``.

    ``scope_expression("contact", "name.exists()")`` ->
    ``"contact.all(name.exists())"``. Choice markers are dropped.
    """
    if not relative_path:
        return expression
    relative = relative_path.replace("[x]", "")
    return f"{relative}.all({expression})"


# =============================================================================
# YAML loading
# =============================================================================


def _read_yaml_list(path: str | Path) -> list[Any]:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Rule file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            content = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Rule file {path} is not valid YAML: {e}") from e

    if content is None:
        return []
    if not isinstance(content, list):
        content = [content]
    return content


def load_builtin_definitions(path: str | Path | None = None) -> list[BuiltinConstraint]:
    """Load packaged (or extra) built-in constraint definitions."""
    path = Path(path) if path else DEFAULT_RULES_FILE
    definitions = []
    for item in _read_yaml_list(path):
        try:
            definitions.append(BuiltinConstraint.model_validate(item))
        except ValueError as e:
            raise ConfigError(f"Invalid constraint definition in {path}: {e}") from e
    return definitions


def load_profile_differentials(path: str | Path) -> list[ProfileDifferential]:
    """Load a YAML list of already-extracted profile differentials."""
    differentials = []
    for item in _read_yaml_list(path):
        try:
            differentials.append(ProfileDifferential.model_validate(item))
        except ValueError as e:
            raise ConfigError(f"Invalid profile differential in {path}: {e}") from e
    return differentials
