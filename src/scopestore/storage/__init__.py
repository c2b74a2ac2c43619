"""Storage adapters for scopestore."""

import logging
from abc import abstractmethod
from collections.abc import Mapping
from typing import Any, Optional, Protocol, runtime_checkable

from ..models import Scope, StorageContext, UserStorage
from .adapters import (
    BlogOptionStorage,
    NetworkOptionStorage,
    SiteOptionStorage,
    UserMetaStorage,
    UserOptionStorage,
)
from .filesystem import FileSystemBackend
from .memory import MemoryBackend

logger = logging.getLogger(__name__)


@runtime_checkable
class RowBackend(Protocol):
    """Protocol for the physical store holding named rows grouped in tables."""

    def get(self, table: str, name: str) -> Any:
        """Return the stored value, or ``ABSENT`` when the row does not exist."""
        ...

    def add(self, table: str, name: str, value: Any, autoload: Optional[bool]) -> bool:
        """Create a row. Returns False if it already exists or the write failed."""
        ...

    def put(self, table: str, name: str, value: Any) -> bool:
        """Write a row, keeping any autoload flag recorded at creation."""
        ...

    def autoload_of(self, table: str, name: str) -> Optional[bool]:
        """Return the autoload flag recorded when the row was created."""
        ...


class StorageAdapter(Protocol):
    """Protocol for scope storage adapters."""

    @abstractmethod
    def read(self, main_key: str) -> Any:
        """Read the main row; returns ``ABSENT`` when it does not exist."""
        ...

    @abstractmethod
    def create(self, main_key: str, mapping: Mapping[str, Any], autoload: Optional[bool] = None) -> bool:
        """Create the main row, applying the autoload hint where supported."""
        ...

    @abstractmethod
    def update(self, main_key: str, mapping: Mapping[str, Any]) -> bool:
        """Overwrite the main row without touching autoload."""
        ...

    @abstractmethod
    def supports_autoload(self) -> bool:
        """Whether this scope honors the autoload hint."""
        ...

    @abstractmethod
    def scope(self) -> Scope:
        """Scope served by this adapter."""
        ...


def make_storage(context: StorageContext, backend: RowBackend) -> StorageAdapter:
    """Factory function to create a StorageAdapter for a storage context.

    Args:
        context: Storage context selecting the scope
        backend: Physical row store shared by every scope

    Returns:
        StorageAdapter instance for ``context.scope``
    """
    if context.scope == Scope.NETWORK:
        storage: StorageAdapter = NetworkOptionStorage(backend)
    elif context.scope == Scope.BLOG:
        storage = BlogOptionStorage(backend, int(context.blog_id or 0))
    elif context.scope == Scope.USER:
        if context.user_storage == UserStorage.OPTION:
            storage = UserOptionStorage(backend, int(context.user_id or 0), context.user_global)
        else:
            storage = UserMetaStorage(backend, int(context.user_id or 0))
    else:
        storage = SiteOptionStorage(backend)

    logger.debug(f"Selected {type(storage).__name__} for context '{context.cache_key}'")
    return storage


__all__ = [
    "RowBackend",
    "StorageAdapter",
    "make_storage",
    "SiteOptionStorage",
    "NetworkOptionStorage",
    "BlogOptionStorage",
    "UserMetaStorage",
    "UserOptionStorage",
    "MemoryBackend",
    "FileSystemBackend",
]
