"""scopestore - Grouped, scope-aware options store with a gated write path."""

__version__ = "0.1.0"
__author__ = "scopestore Team"
__email__ = "team@scopestore.dev"

from .errors import (
    ConfigurationError,
    OptionsError,
    RowReadError,
    SanitizationIdempotenceError,
    SchemaError,
    SchemaMissingError,
    ValidationContractError,
    ValidationFailedError,
)
from .gate import VetoRegistry, WriteGate
from .models import ABSENT, Scope, StorageContext, WriteContext, WriteOp
from .policy import (
    KeyWhitelistPolicy,
    OperationPolicy,
    RestrictedDefaultWritePolicy,
    WritePolicy,
)
from .schema import Rule, SchemaRegistry
from .storage import FileSystemBackend, MemoryBackend, StorageAdapter
from .store import OptionsStore

__all__ = [
    "OptionsStore",
    "StorageContext",
    "WriteContext",
    "WriteOp",
    "Scope",
    "ABSENT",
    "Rule",
    "SchemaRegistry",
    "WritePolicy",
    "OperationPolicy",
    "KeyWhitelistPolicy",
    "RestrictedDefaultWritePolicy",
    "VetoRegistry",
    "WriteGate",
    "StorageAdapter",
    "MemoryBackend",
    "FileSystemBackend",
    "OptionsError",
    "ConfigurationError",
    "RowReadError",
    "SchemaError",
    "SchemaMissingError",
    "SanitizationIdempotenceError",
    "ValidationContractError",
    "ValidationFailedError",
]
