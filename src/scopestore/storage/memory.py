"""In-process row backend for scopestore."""

from __future__ import annotations

import copy
from typing import Any, Optional

from ..models import ABSENT


class MemoryBackend:
    """Row backend that keeps rows in a dictionary.

    Values are deep-copied on the way in and out so callers never share
    structures with the backend.
    """

    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], Any] = {}
        self._autoload: dict[tuple[str, str], Optional[bool]] = {}

    def get(self, table: str, name: str) -> Any:
        if (table, name) not in self._rows:
            return ABSENT
        return copy.deepcopy(self._rows[(table, name)])

    def add(self, table: str, name: str, value: Any, autoload: Optional[bool]) -> bool:
        if (table, name) in self._rows:
            return False
        self._rows[(table, name)] = copy.deepcopy(value)
        self._autoload[(table, name)] = autoload
        return True

    def put(self, table: str, name: str, value: Any) -> bool:
        self._rows[(table, name)] = copy.deepcopy(value)
        self._autoload.setdefault((table, name), None)
        return True

    def autoload_of(self, table: str, name: str) -> Optional[bool]:
        return self._autoload.get((table, name))

    def tables(self) -> list[str]:
        """List tables holding at least one row."""
        return sorted({table for table, _ in self._rows})
