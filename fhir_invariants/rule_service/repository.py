"""
Per-type constraint repository.

Holds the ordered invariant rules for every type, built once from the
packaged definitions and optionally extended by profile differentials.
After ``freeze()`` the repository is read-only and every rule has been
compiled, so it can be shared by concurrent evaluation runs.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import structlog

from fhir_invariants.compiler import CompiledExpression, compile_expression
from fhir_invariants.core.config import Settings, get_settings
from fhir_invariants.core.errors import CompileError, ConfigError
from fhir_invariants.core.ontology.types import RuleOrigin
from .loader import (
    ConstraintRule,
    ProfileDifferential,
    load_builtin_definitions,
    load_profile_differentials,
    scope_expression,
    split_element_path,
)

logger = structlog.get_logger(__name__)


class ConstraintRepository:
    """Registry mapping a type name to its ordered constraint rules.

    Within one type, rule keys are unique: the first registered rule wins
    and later rules with the same key are dropped.
    """

    def __init__(self) -> None:
        self._rules: dict[str, list[ConstraintRule]] = {}
        self._compiled: dict[tuple[str, str], CompiledExpression | CompileError] = {}
        self._frozen = False
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    def load_defaults(self, extra_file: str | Path | None = None) -> int:
        """Load the packaged built-in rules (and an optional extra file).

        Returns:
            Number of rules registered.

        Raises:
            ConfigError: If a definition's path cannot be split into
                (type, relative-path).
        """
        self._ensure_mutable()
        sources: list[Path | None] = [None]
        if extra_file:
            sources.append(Path(extra_file))

        staged: list[tuple[str, ConstraintRule]] = []
        for source in sources:
            for definition in load_builtin_definitions(source):
                type_name, relative = split_element_path(definition.path)
                staged.append((
                    type_name,
                    ConstraintRule(
                        key=definition.key,
                        expression=scope_expression(relative, definition.expression),
                        severity=definition.severity,
                        human=definition.human,
                        origin=RuleOrigin.BASE,
                        scope=definition.path if relative else None,
                        source=str(source) if source else None,
                    ),
                ))

        added = self._commit(staged)
        logger.info("repository.defaults.loaded", rules=added, types=len(self._rules))
        return added

    def merge_profile(
        self, differential: ProfileDifferential | Mapping[str, Any]
    ) -> list[ConstraintRule]:
        """Merge the constraints of one profile differential.

        Constraints declared on nested elements are rewritten as
        ``relativePath.all(expression)``. A rule whose key already exists for
        the type is silently dropped. The merge is all-or-nothing: a malformed
        element path raises before anything is registered.

        Returns:
            The rules that were actually added.

        Raises:
            ConfigError: If an element path is not qualified by the
                differential's type, or the repository is frozen.
        """
        self._ensure_mutable()
        if not isinstance(differential, ProfileDifferential):
            try:
                differential = ProfileDifferential.model_validate(differential)
            except ValueError as e:
                raise ConfigError(f"Invalid profile differential: {e}") from e

        staged: list[tuple[str, ConstraintRule]] = []
        for element in differential.elements:
            _, relative = split_element_path(element.path, differential.type)
            for constraint in element.constraints:
                if not constraint.expression or not constraint.expression.strip():
                    continue
                staged.append((
                    differential.type,
                    ConstraintRule(
                        key=constraint.key,
                        expression=scope_expression(relative, constraint.expression),
                        severity=constraint.severity,
                        human=constraint.human,
                        origin=RuleOrigin.PROFILE,
                        scope=element.path if relative else None,
                        source=differential.url,
                    ),
                ))

        added = []
        with self._lock:
            for type_name, rule in staged:
                if self._register(type_name, rule):
                    added.append(rule)

        logger.info(
            "repository.profile.merged",
            profile=differential.url or differential.name,
            type=differential.type,
            added=len(added),
            dropped=len(staged) - len(added),
        )
        return added

    def add_rule(self, type_name: str, rule: ConstraintRule) -> bool:
        """Register one rule; returns False if its key is already taken."""
        self._ensure_mutable()
        with self._lock:
            return self._register(type_name, rule)

    def load_profiles_file(self, path: str | Path) -> int:
        """Merge every differential in a YAML file, in file order."""
        return sum(len(self.merge_profile(d)) for d in load_profile_differentials(path))

    def freeze(self) -> None:
        """Compile every rule and make the repository read-only."""
        with self._lock:
            for type_name, rules in self._rules.items():
                for rule in rules:
                    self._compile(type_name, rule)
            self._frozen = True

        failures = [
            key for key, compiled in self._compiled.items()
            if isinstance(compiled, CompileError)
        ]
        logger.info(
            "repository.frozen",
            types=len(self._rules),
            rules=sum(len(r) for r in self._rules.values()),
            compile_failures=len(failures),
        )

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def rules_for(self, type_name: str) -> tuple[ConstraintRule, ...]:
        """Ordered, read-only view of the rules for a type."""
        return tuple(self._rules.get(type_name, ()))

    def type_names(self) -> list[str]:
        return list(self._rules.keys())

    def get_rule(self, type_name: str, key: str) -> ConstraintRule | None:
        for rule in self._rules.get(type_name, ()):
            if rule.key == key:
                return rule
        return None

    def compiled_for(
        self, type_name: str, rule: ConstraintRule
    ) -> CompiledExpression | CompileError:
        """Compiled form of a rule, or the CompileError it produced."""
        compiled = self._compiled.get((type_name, rule.key))
        if compiled is not None:
            return compiled
        with self._lock:
            return self._compile(type_name, rule)

    def get_stats(self) -> dict[str, Any]:
        return {
            "types": len(self._rules),
            "rules": sum(len(r) for r in self._rules.values()),
            "compiled": len(self._compiled),
            "frozen": self._frozen,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise ConfigError("Constraint repository is frozen")

    def _commit(self, staged: Iterable[tuple[str, ConstraintRule]]) -> int:
        with self._lock:
            return sum(1 for type_name, rule in staged if self._register(type_name, rule))

    def _register(self, type_name: str, rule: ConstraintRule) -> bool:
        rules = self._rules.setdefault(type_name, [])
        if any(existing.key == rule.key for existing in rules):
            logger.debug(
                "repository.rule.collision",
                type=type_name,
                key=rule.key,
                dropped_expression=rule.expression,
            )
            return False
        rules.append(rule)
        return True

    def _compile(
        self, type_name: str, rule: ConstraintRule
    ) -> CompiledExpression | CompileError:
        cache_key = (type_name, rule.key)
        compiled = self._compiled.get(cache_key)
        if compiled is not None:
            return compiled
        try:
            compiled = compile_expression(rule.expression)
        except CompileError as e:
            logger.warning(
                "repository.rule.compile_failed",
                type=type_name,
                key=rule.key,
                error=e.reason,
            )
            compiled = e
        self._compiled[cache_key] = compiled
        return compiled


def build_repository(
    settings: Settings | None = None,
    profiles: Iterable[ProfileDifferential | Mapping[str, Any]] = (),
) -> ConstraintRepository:
    """Build a frozen repository: defaults, then profiles, then compile."""
    settings = settings or get_settings()
    repository = ConstraintRepository()
    repository.load_defaults(settings.extra_rules_file)
    for profile in profiles:
        repository.merge_profile(profile)
    if settings.eager_compile:
        repository.freeze()
    return repository


# Singleton instance for application-wide use
_global_repository: ConstraintRepository | None = None


def get_repository() -> ConstraintRepository:
    """Get or create the global default repository.

    Returns:
        The global ConstraintRepository instance
    """
    global _global_repository
    if _global_repository is None:
        _global_repository = build_repository()
    return _global_repository


def reset_repository() -> None:
    """Reset the global repository."""
    global _global_repository
    _global_repository = None
