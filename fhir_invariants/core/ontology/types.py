"""Core domain enums for invariant validation.

This module defines the closed vocabularies shared by the compiler, the
constraint repository and the evaluator:
- Issue severities
- Rule origins
- Primitive value kinds used by type tests (``is``/``as``/``ofType``)
"""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any


class Severity(str, Enum):
    """Graded severity of a rule or an issue."""

    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class RuleOrigin(str, Enum):
    """Where a constraint rule came from."""

    BASE = "base"
    PROFILE = "profile"


class PrimitiveKind(str, Enum):
    """Closed set of primitive kinds a type specifier can resolve to."""

    BOOLEAN = "Boolean"
    INTEGER = "Integer"
    DECIMAL = "Decimal"
    STRING = "String"
    DATE = "Date"
    DATETIME = "DateTime"
    TIME = "Time"


# Type names (system and FHIR primitive) that resolve to a primitive kind
TYPE_NAME_KINDS: dict[str, PrimitiveKind] = {
    "Boolean": PrimitiveKind.BOOLEAN,
    "boolean": PrimitiveKind.BOOLEAN,
    "Integer": PrimitiveKind.INTEGER,
    "integer": PrimitiveKind.INTEGER,
    "positiveInt": PrimitiveKind.INTEGER,
    "unsignedInt": PrimitiveKind.INTEGER,
    "Decimal": PrimitiveKind.DECIMAL,
    "decimal": PrimitiveKind.DECIMAL,
    "String": PrimitiveKind.STRING,
    "string": PrimitiveKind.STRING,
    "code": PrimitiveKind.STRING,
    "id": PrimitiveKind.STRING,
    "markdown": PrimitiveKind.STRING,
    "uri": PrimitiveKind.STRING,
    "url": PrimitiveKind.STRING,
    "canonical": PrimitiveKind.STRING,
    "oid": PrimitiveKind.STRING,
    "uuid": PrimitiveKind.STRING,
    "base64Binary": PrimitiveKind.STRING,
    "Date": PrimitiveKind.DATE,
    "date": PrimitiveKind.DATE,
    "DateTime": PrimitiveKind.DATETIME,
    "dateTime": PrimitiveKind.DATETIME,
    "instant": PrimitiveKind.DATETIME,
    "Time": PrimitiveKind.TIME,
    "time": PrimitiveKind.TIME,
}


# Complex data types a choice element may take, e.g. value[x] -> valueQuantity
COMPLEX_DATA_TYPES: frozenset[str] = frozenset({
    "Address", "Age", "Annotation", "Attachment", "CodeableConcept",
    "CodeableReference", "Coding", "ContactDetail", "ContactPoint", "Count",
    "DataRequirement", "Distance", "Dosage", "Duration", "Expression",
    "HumanName", "Identifier", "Meta", "Money", "ParameterDefinition", "Period",
    "Quantity", "Range", "Ratio", "RatioRange", "Reference", "RelatedArtifact",
    "SampledData", "Signature", "Timing", "TriggerDefinition", "UsageContext",
})

# Suffixes that turn an element name into a choice variant: valueString, valueQuantity
CHOICE_TYPE_SUFFIXES: frozenset[str] = frozenset(
    {name[0].upper() + name[1:] for name in TYPE_NAME_KINDS} | COMPLEX_DATA_TYPES
)


def kind_of_type_name(type_name: str) -> PrimitiveKind | None:
    """Resolve a (possibly namespaced) type name to a primitive kind."""
    if "." in type_name:
        type_name = type_name.rsplit(".", 1)[1]
    return TYPE_NAME_KINDS.get(type_name)


def kind_of_value(value: Any) -> PrimitiveKind | None:
    """Return the primitive kind of a Python value, if it has one."""
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return PrimitiveKind.BOOLEAN
    if isinstance(value, int):
        return PrimitiveKind.INTEGER
    if isinstance(value, Decimal):
        return PrimitiveKind.DECIMAL
    if isinstance(value, str):
        return PrimitiveKind.STRING
    # datetime before date: datetime is a date subclass
    if isinstance(value, datetime):
        return PrimitiveKind.DATETIME
    if isinstance(value, date):
        return PrimitiveKind.DATE
    if isinstance(value, time):
        return PrimitiveKind.TIME
    return None
