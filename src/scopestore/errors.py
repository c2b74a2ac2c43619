"""Error types for scopestore."""

from __future__ import annotations

from typing import Any


class OptionsError(Exception):
    """Base error for scopestore."""


class ConfigurationError(OptionsError):
    """Raised when a context, schema rule or write context is misconfigured."""


class RowReadError(OptionsError, OSError):
    """Raised when a stored row exists but cannot be read or parsed."""


class SchemaError(OptionsError):
    """Base error for schema pipeline contract violations."""


class SchemaMissingError(SchemaError):
    """Raised when a mutation targets a key with no registered rule."""

    def __init__(self, key: str):
        super().__init__(f"No schema defined for option '{key}'")
        self.key = key


class SanitizationIdempotenceError(SchemaError):
    """Raised when a sanitizer changes its own output on reapplication."""

    def __init__(self, key: str, sanitizer: str, once: str, twice: str):
        super().__init__(
            f"Sanitizer {sanitizer} for option '{key}' is not idempotent: "
            f"first pass gave {once}, second pass gave {twice}"
        )
        self.key = key
        self.sanitizer = sanitizer


class ValidationContractError(SchemaError):
    """Raised when a validator returns something other than a bool."""

    def __init__(self, key: str, validator: str, result: Any):
        super().__init__(
            f"Validator {validator} for option '{key}' must return a bool, "
            f"got {type(result).__name__}"
        )
        self.key = key
        self.validator = validator


class ValidationFailedError(SchemaError):
    """Raised when a validator rejects a value."""

    def __init__(self, key: str, value: str, validator: str):
        super().__init__(
            f"Validation failed for option '{key}' with value {value} "
            f"(validator: {validator})"
        )
        self.key = key
        self.value = value
        self.validator = validator


__all__ = [
    "OptionsError",
    "ConfigurationError",
    "RowReadError",
    "SchemaError",
    "SchemaMissingError",
    "SanitizationIdempotenceError",
    "ValidationContractError",
    "ValidationFailedError",
]
