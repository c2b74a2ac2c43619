"""Scope storage adapters.

Each adapter maps the store's main key onto one table of a row backend.
Using the same main key in different scopes never collides because every
scope (and every blog or user within a scope) owns a separate table.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Optional

from ..models import Scope

if TYPE_CHECKING:
    from . import RowBackend


class _TableStorage:
    """Shared behaviour for adapters that live in a single backend table."""

    scope_tag: Scope = Scope.SITE

    def __init__(self, backend: "RowBackend", table: str):
        self.backend = backend
        self.table = table

    def read(self, main_key: str) -> Any:
        return self.backend.get(self.table, main_key)

    def create(self, main_key: str, mapping: Mapping[str, Any], autoload: Optional[bool] = None) -> bool:
        # Autoload is a site-only concept; other scopes drop the hint
        return self.backend.add(self.table, main_key, dict(mapping), None)

    def update(self, main_key: str, mapping: Mapping[str, Any]) -> bool:
        return self.backend.put(self.table, main_key, dict(mapping))

    def supports_autoload(self) -> bool:
        return False

    def scope(self) -> Scope:
        return self.scope_tag

    def __repr__(self) -> str:
        return f"{type(self).__name__}(table={self.table!r})"


class SiteOptionStorage(_TableStorage):
    """Site-wide option rows; the only scope honoring autoload."""

    scope_tag = Scope.SITE

    def __init__(self, backend: "RowBackend"):
        super().__init__(backend, "options")

    def create(self, main_key: str, mapping: Mapping[str, Any], autoload: Optional[bool] = None) -> bool:
        return self.backend.add(self.table, main_key, dict(mapping), bool(autoload))

    def supports_autoload(self) -> bool:
        return True


class NetworkOptionStorage(_TableStorage):
    """Network-wide option rows."""

    scope_tag = Scope.NETWORK

    def __init__(self, backend: "RowBackend"):
        super().__init__(backend, "sitemeta")


class BlogOptionStorage(_TableStorage):
    """Option rows isolated per sub-site."""

    scope_tag = Scope.BLOG

    def __init__(self, backend: "RowBackend", blog_id: int):
        super().__init__(backend, f"blog_{blog_id}_options")
        self.blog_id = blog_id


class UserMetaStorage(_TableStorage):
    """Per-user metadata rows."""

    scope_tag = Scope.USER

    def __init__(self, backend: "RowBackend", user_id: int):
        super().__init__(backend, f"usermeta_{user_id}")
        self.user_id = user_id


class UserOptionStorage(_TableStorage):
    """Per-user option rows, either per sub-site or network-wide (global)."""

    scope_tag = Scope.USER

    def __init__(self, backend: "RowBackend", user_id: int, global_: bool = False):
        suffix = "global" if global_ else "site"
        super().__init__(backend, f"user_{user_id}_options_{suffix}")
        self.user_id = user_id
        self.global_ = global_
