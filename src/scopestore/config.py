"""Configuration management for scopestore."""

from __future__ import annotations

from pathlib import Path
from typing import Any

try:
    import tomllib as _toml  # Python 3.11+

    TOMLDecodeError = _toml.TOMLDecodeError
except ModuleNotFoundError:
    import tomli as _toml  # type: ignore[no-redef]
    from tomli import TOMLDecodeError  # type: ignore

from .errors import ConfigurationError
from .models import Scope, StorageContext, UserStorage
from .validators import rules_from_config

CONFIG_FILENAME = "scopestore.toml"


class Config:
    """Configuration manager for scopestore."""

    def __init__(self, config_path: Path | None = None):
        """Initialize configuration from TOML file."""
        if config_path is None:
            # Default to scopestore.toml in current directory
            config_path = Path.cwd() / CONFIG_FILENAME

        self.config_path = config_path
        self._config: dict[str, Any] = {}

        if config_path.exists():
            self._load_config()

    def _load_config(self) -> None:
        """Load configuration from TOML file."""
        try:
            with open(self.config_path, "rb") as f:
                self._config = _toml.load(f)
        except TOMLDecodeError as e:
            # Re-raise TOML parsing errors so CLI can handle them
            raise ValueError(
                f"Invalid TOML configuration in {self.config_path}: {e}"
            ) from e
        except OSError as e:
            raise ValueError(
                f"Failed to load configuration from {self.config_path}: {e}"
            ) from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key."""
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    @property
    def main_key(self) -> str:
        """Get the main row name."""
        value = self.get("store.main_key", "options")
        return str(value) if value is not None else "options"

    @property
    def scope(self) -> str:
        """Get the configured storage scope."""
        value = self.get("store.scope", "site")
        return str(value).lower() if value is not None else "site"

    @property
    def autoload(self) -> bool:
        """Get whether the row is autoloaded on first creation."""
        value = self.get("store.autoload", True)
        return bool(value) if value is not None else True

    @property
    def storage_context(self) -> StorageContext:
        """Build the storage context from the ``[store]`` table.

        Raises:
            ConfigurationError: for unknown scopes or missing ids
        """
        scope = self.scope
        if scope == Scope.SITE.value:
            return StorageContext.for_site()
        elif scope == Scope.NETWORK.value:
            return StorageContext.for_network()
        elif scope == Scope.BLOG.value:
            return StorageContext.for_blog(self.get("store.blog_id"))
        elif scope == Scope.USER.value:
            return StorageContext.for_user(
                self.get("store.user_id"),
                self.get("store.user_storage", UserStorage.META.value),
                bool(self.get("store.user_global", False)),
            )
        raise ConfigurationError(f"Unknown scope '{scope}' in {self.config_path}")

    @property
    def storage_driver(self) -> str:
        """Get storage driver type."""
        value = self.get("storage.driver", "filesystem")
        return str(value) if value is not None else "filesystem"

    @property
    def storage_root(self) -> Path:
        """Get storage root path."""
        root_path = self.get("storage.root_path", ".scopestore")
        storage_path = Path(root_path)

        # If relative path, resolve relative to config file directory
        if not storage_path.is_absolute():
            storage_path = self.config_path.parent / storage_path

        return storage_path

    @property
    def policy_driver(self) -> str:
        """Get write policy driver."""
        value = self.get("policy.driver", "operations")
        return str(value) if value is not None else "operations"

    @property
    def policy_allow(self) -> list[str] | None:
        """Get allowed operations; None allows every operation."""
        value = self.get("policy.allow")
        return list(value) if value is not None else None

    @property
    def policy_deny(self) -> list[str]:
        """Get denied operations."""
        value = self.get("policy.deny", [])
        return list(value) if value is not None else []

    @property
    def policy_keys(self) -> list[str]:
        """Get whitelisted keys for the whitelist policy."""
        value = self.get("policy.keys", [])
        return list(value) if value is not None else []

    @property
    def log_level(self) -> str:
        """Get logging level name."""
        value = self.get("logging.level", "WARNING")
        return str(value).upper() if value is not None else "WARNING"

    def schema_rules(self) -> dict[str, dict[str, Any]]:
        """Build schema rules from the ``[schema.*]`` tables."""
        tables = self.get("schema", {})
        if not isinstance(tables, dict):
            raise ConfigurationError(f"[schema] in {self.config_path} must be a table")
        return rules_from_config(tables)

    def make_backend(self) -> Any:
        """Create the row backend selected by ``[storage] driver``."""
        from .storage import FileSystemBackend, MemoryBackend

        driver = self.storage_driver.lower()
        if driver == "filesystem":
            return FileSystemBackend(self.storage_root)
        elif driver == "memory":
            return MemoryBackend()
        raise ConfigurationError(f"Unknown storage driver '{driver}'")
