"""Built-in sanitizers and validator factories.

Sanitizers are pure and idempotent; validators always return a strict bool.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Callable

from .errors import ConfigurationError
from .models import to_canonical_json

_INT_PATTERN = re.compile(r"^[+-]?\d+$")
_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off", ""}


# Sanitizers


def strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def lower(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def to_int(value: Any) -> Any:
    """Convert integer-looking strings and integral floats to int."""
    if isinstance(value, str) and _INT_PATTERN.match(value.strip()):
        return int(value.strip())
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def to_float(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return value
    return value


def to_bool(value: Any) -> Any:
    """Map common truthy/falsy words and 0/1 to bool; anything else is left alone."""
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    elif isinstance(value, int) and not isinstance(value, bool) and value in (0, 1):
        return bool(value)
    return value


def to_list(value: Any) -> Any:
    """Split comma separated strings and turn tuples into lists."""
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, tuple):
        return list(value)
    return value


def _sort_key(value: Any) -> str:
    return to_canonical_json(value)


def order_insensitive_deep(value: Any) -> Any:
    """Canonicalize nested lists and mappings so element order never matters."""
    if isinstance(value, Mapping):
        return {k: order_insensitive_deep(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return sorted((order_insensitive_deep(v) for v in value), key=_sort_key)
    return value


def order_insensitive_shallow(value: Any) -> Any:
    """Canonicalize only the top level of a list or mapping."""
    if isinstance(value, Mapping):
        return {k: value[k] for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return sorted(value, key=_sort_key)
    return value


def chain(*sanitizers: Callable[[Any], Any]) -> Callable[[Any], Any]:
    """Compose sanitizers left to right."""

    def sanitize(value: Any) -> Any:
        for sanitizer in sanitizers:
            value = sanitizer(value)
        return value

    sanitize.__qualname__ = "chain(" + ", ".join(
        getattr(s, "__name__", type(s).__name__) for s in sanitizers
    ) + ")"
    return sanitize


SANITIZERS: dict[str, Callable[[Any], Any]] = {
    "strip": strip,
    "lower": lower,
    "to_int": to_int,
    "to_float": to_float,
    "to_bool": to_bool,
    "to_list": to_list,
    "order_insensitive_deep": order_insensitive_deep,
    "order_insensitive_shallow": order_insensitive_shallow,
}


# Validator factories


def _named(func: Callable[[Any], bool], name: str) -> Callable[[Any], bool]:
    func.__qualname__ = name
    func.__name__ = name
    return func


def int_in_range(minimum: int, maximum: int) -> Callable[[Any], bool]:
    """Accept ints (not bools) within ``[minimum, maximum]``."""

    def check(value: Any) -> bool:
        return (
            isinstance(value, int)
            and not isinstance(value, bool)
            and minimum <= value <= maximum
        )

    return _named(check, f"int_in_range({minimum}, {maximum})")


def number_in_range(minimum: float, maximum: float) -> Callable[[Any], bool]:
    def check(value: Any) -> bool:
        return (
            isinstance(value, (int, float))
            and not isinstance(value, bool)
            and minimum <= value <= maximum
        )

    return _named(check, f"number_in_range({minimum}, {maximum})")


def is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def is_string(value: Any) -> bool:
    return isinstance(value, str)


def one_of(*choices: Any) -> Callable[[Any], bool]:
    allowed = tuple(choices)

    def check(value: Any) -> bool:
        return any(value == choice and type(value) is type(choice) for choice in allowed)

    return _named(check, f"one_of{allowed!r}")


def max_length(limit: int) -> Callable[[Any], bool]:
    def check(value: Any) -> bool:
        return isinstance(value, (str, list, tuple)) and len(value) <= limit

    return _named(check, f"max_length({limit})")


def is_list_of(predicate: Callable[[Any], bool]) -> Callable[[Any], bool]:
    def check(value: Any) -> bool:
        return isinstance(value, list) and all(predicate(item) is True for item in value)

    inner = getattr(predicate, "__name__", "predicate")
    return _named(check, f"is_list_of({inner})")


def _both(first: Callable[[Any], bool], second: Callable[[Any], bool]) -> Callable[[Any], bool]:
    def check(value: Any) -> bool:
        return first(value) is True and second(value) is True

    return _named(check, f"{first.__name__} and {second.__name__}")


# Rules built from configuration tables

_COERCERS = {
    "int": to_int,
    "float": to_float,
    "bool": to_bool,
    "list": to_list,
}


def rule_from_table(key: str, table: Mapping[str, Any]) -> dict[str, Any]:
    """Build a rule mapping from one ``[schema.<key>]`` configuration table.

    Raises:
        ConfigurationError: for unknown types or sanitizer names
    """
    kind = str(table.get("type", "str")).lower()
    minimum = table.get("min")
    maximum = table.get("max")

    if kind == "int":
        validator = int_in_range(
            int(minimum) if minimum is not None else -(2**63),
            int(maximum) if maximum is not None else 2**63 - 1,
        )
    elif kind == "float":
        validator = number_in_range(
            float(minimum) if minimum is not None else float("-inf"),
            float(maximum) if maximum is not None else float("inf"),
        )
    elif kind == "bool":
        validator = is_bool
    elif kind == "str":
        validator = is_string
        if maximum is not None:
            validator = _both(is_string, max_length(int(maximum)))
    elif kind == "choice":
        choices = table.get("choices")
        if not choices:
            raise ConfigurationError(f"Schema for key '{key}': choice type needs choices")
        validator = one_of(*choices)
    elif kind == "list":
        validator = is_list_of(is_string)
    else:
        raise ConfigurationError(f"Schema for key '{key}': unknown type '{kind}'")

    sanitizers: list[Callable[[Any], Any]] = []
    if kind in _COERCERS:
        sanitizers.append(_COERCERS[kind])
    for name in table.get("sanitize", []):
        if name not in SANITIZERS:
            raise ConfigurationError(f"Schema for key '{key}': unknown sanitizer '{name}'")
        sanitizers.append(SANITIZERS[name])

    rule: dict[str, Any] = {"validate": validator}
    if sanitizers:
        rule["sanitize"] = sanitizers[0] if len(sanitizers) == 1 else chain(*sanitizers)
    if "default" in table:
        rule["default"] = table["default"]
    return rule


def rules_from_config(tables: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Build rule mappings for every ``[schema.*]`` table."""
    rules: dict[str, dict[str, Any]] = {}
    for key, table in tables.items():
        if not isinstance(table, Mapping):
            raise ConfigurationError(f"Schema entry '{key}' must be a table")
        rules[key] = rule_from_table(key, table)
    return rules
