"""Rule service - constraint definitions, profile merging, and the repository."""

from .loader import (
    ConstraintRule,
    BuiltinConstraint,
    ConstraintSpec,
    DifferentialElement,
    ProfileDifferential,
    split_element_path,
    scope_expression,
    load_builtin_definitions,
    load_profile_differentials,
)
from .repository import (
    ConstraintRepository,
    build_repository,
    get_repository,
    reset_repository,
)

__all__ = [
    # Loader
    "ConstraintRule",
    "BuiltinConstraint",
    "ConstraintSpec",
    "DifferentialElement",
    "ProfileDifferential",
    "split_element_path",
    "scope_expression",
    "load_builtin_definitions",
    "load_profile_differentials",
    # Repository
    "ConstraintRepository",
    "build_repository",
    "get_repository",
    "reset_repository",
]
