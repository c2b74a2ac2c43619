"""Schema rules and the sanitize/validate pipeline."""

from __future__ import annotations

import functools
import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import (
    ConfigurationError,
    SanitizationIdempotenceError,
    SchemaMissingError,
    ValidationContractError,
    ValidationFailedError,
)
from .models import ABSENT, normalize_key, structures_match

logger = logging.getLogger(__name__)

Sanitizer = Callable[[Any], Any]
Validator = Callable[[Any], bool]

# Accepted spellings for rule fields in plain mappings
_FIELD_ALIASES = {
    "default": "default",
    "sanitize": "sanitizer",
    "sanitizer": "sanitizer",
    "validate": "validator",
    "validator": "validator",
}


class Rule(BaseModel):
    """Schema rule for one option key."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    default: Any = Field(None, description="Literal default or resolver(config)")
    sanitizer: Optional[Sanitizer] = Field(None, description="Pure, idempotent sanitizer")
    validator: Optional[Validator] = Field(None, description="Predicate returning a bool")

    @property
    def has_default(self) -> bool:
        """Whether a default was supplied for this rule."""
        return "default" in self.model_fields_set


def describe_callable(func: Any) -> str:
    """Describe a callable for diagnostics."""
    if isinstance(func, functools.partial):
        return f"partial({describe_callable(func.func)})"
    name = getattr(func, "__qualname__", None) or getattr(func, "__name__", None)
    if name:
        module = getattr(func, "__module__", None)
        return f"{module}.{name}" if module and module != "builtins" else name
    if callable(func):
        return f"{type(func).__qualname__}.__call__"
    return "callable"


def stringify_value(value: Any, limit: int = 120) -> str:
    """Short, safe representation of a value for error messages."""
    if value is None or isinstance(value, (str, int, float, bool)):
        text = repr(value)
    elif isinstance(value, Mapping):
        text = f"dict({len(value)})"
    elif isinstance(value, (list, tuple, set, frozenset)):
        text = f"{type(value).__name__}({len(value)})"
    else:
        text = f"object({type(value).__name__})"
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


class SchemaRegistry:
    """Per-key rules with the sanitize/validate pipeline.

    Registration is atomic: rules are merged into a copy of the current map
    and only swapped in once every merged rule is well formed.
    """

    def __init__(self, rules: Optional[Mapping[str, Any]] = None):
        self._rules: dict[str, Rule] = {}
        if rules:
            self.register(rules)

    def register(self, rules: Mapping[str, Any]) -> list[str]:
        """Merge rules into the registry field by field.

        Args:
            rules: Map of option key to a Rule or a mapping with any of
                ``default``, ``sanitize`` and ``validate``

        Returns:
            Normalized keys touched by this registration

        Raises:
            ConfigurationError: if any merged rule is malformed; the registry
                is left exactly as it was
        """
        staged = dict(self._rules)
        touched: list[str] = []

        for raw_key, entry in rules.items():
            key = normalize_key(raw_key)
            if not key:
                raise ConfigurationError(f"Schema key {raw_key!r} is empty after normalization")

            incoming = self._coerce_entry(key, entry)
            existing = staged.get(key)
            merged: dict[str, Any] = {}
            if existing is not None:
                merged = {name: getattr(existing, name) for name in existing.model_fields_set}
            merged.update(incoming)

            if not callable(merged.get("validator")):
                raise ConfigurationError(f"Schema for key '{key}' requires a callable validate")
            sanitizer = merged.get("sanitizer")
            if sanitizer is not None and not callable(sanitizer):
                raise ConfigurationError(f"Schema for key '{key}': sanitize must be callable")

            staged[key] = Rule(**merged)
            touched.append(key)

        self._rules = staged
        logger.debug(f"Registered schema for {len(touched)} key(s): {touched}")
        return touched

    def _coerce_entry(self, key: str, entry: Any) -> dict[str, Any]:
        """Turn a Rule or mapping into a dict of explicitly supplied fields."""
        if isinstance(entry, Rule):
            return {name: getattr(entry, name) for name in entry.model_fields_set}
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"Schema for key '{key}' must be a mapping or Rule")

        fields: dict[str, Any] = {}
        for name, value in entry.items():
            if name not in _FIELD_ALIASES:
                raise ConfigurationError(f"Schema for key '{key}' has unknown field '{name}'")
            fields[_FIELD_ALIASES[name]] = value
        return fields

    def apply(self, key: str, value: Any) -> Any:
        """Sanitize and validate a value for a key.

        Returns:
            The sanitized value

        Raises:
            SchemaMissingError: no rule for the key
            SanitizationIdempotenceError: the sanitizer is not idempotent
            ValidationContractError: the validator returned a non-bool
            ValidationFailedError: the validator returned False
        """
        key = normalize_key(key)
        rule = self._rules.get(key)
        if rule is None:
            logger.warning(f"No schema for option '{key}'")
            raise SchemaMissingError(key)

        if rule.sanitizer is not None:
            once = rule.sanitizer(value)
            twice = rule.sanitizer(once)
            if twice != once and not structures_match(twice, once):
                raise SanitizationIdempotenceError(
                    key,
                    describe_callable(rule.sanitizer),
                    stringify_value(once),
                    stringify_value(twice),
                )
            value = once

        result = rule.validator(value)  # type: ignore[misc]
        if not isinstance(result, bool):
            raise ValidationContractError(key, describe_callable(rule.validator), result)
        if not result:
            raise ValidationFailedError(
                key, stringify_value(value), describe_callable(rule.validator)
            )
        return value

    def resolve_default(self, key: str, config: Any = None) -> Any:
        """Resolve the default for a key, or ABSENT when the rule has none.

        Resolvers are only invoked here, with the optional configuration object.
        """
        rule = self._rules.get(normalize_key(key))
        if rule is None or not rule.has_default:
            return ABSENT
        if callable(rule.default):
            return rule.default(config)
        return rule.default

    def get(self, key: str) -> Optional[Rule]:
        return self._rules.get(normalize_key(key))

    def keys(self) -> list[str]:
        return list(self._rules)

    def snapshot(self) -> dict[str, Rule]:
        """Copy of the rule map, for restore()."""
        return dict(self._rules)

    def restore(self, snapshot: Mapping[str, Rule]) -> None:
        self._rules = dict(snapshot)

    def as_mapping(self) -> Mapping[str, Rule]:
        """Read-only view of the rule map."""
        return MappingProxyType(self._rules)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and normalize_key(key) in self._rules

    def __len__(self) -> int:
        return len(self._rules)
