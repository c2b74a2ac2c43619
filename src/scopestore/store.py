"""Grouped, scope-aware options store."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable, Optional

from .errors import ConfigurationError
from .gate import VetoRegistry, WriteGate
from .models import (
    ABSENT,
    Scope,
    StorageContext,
    UserStorage,
    WriteContext,
    WriteOp,
    normalize_key,
    structures_match,
)
from .policy import WritePolicy
from .schema import Rule, SchemaRegistry
from .storage import RowBackend, StorageAdapter, make_storage

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

# Key used when a migration returns a non-mapping value
RESERVED_VALUE_KEY = "value"

Migration = Callable[[Any, "OptionsStore"], Any]


def _strictly_equal(left: Any, right: Any) -> bool:
    """Equality that also compares types and mapping key order."""
    if type(left) is not type(right):
        return False
    if isinstance(left, dict):
        return list(left) == list(right) and all(
            _strictly_equal(left[k], right[k]) for k in left
        )
    if isinstance(left, (list, tuple)):
        return len(left) == len(right) and all(
            _strictly_equal(a, b) for a, b in zip(left, right)
        )
    return bool(left == right)


class OptionsStore:
    """One named row of key/value options for one storage scope.

    Staging (``stage_option``/``stage_options``) only touches memory and is
    persisted by ``commit_merge``/``commit_replace``. ``delete_option``,
    ``clear``, ``seed_if_missing`` and ``migrate`` persist immediately.
    Every mutation passes the write gate first; a declined write returns
    False and leaves memory and storage untouched. Row writes are gated
    again under ``save_all``.
    """

    def __init__(
        self,
        main_key: str,
        backend: RowBackend,
        context: Optional[StorageContext] = None,
        autoload: bool = True,
        *,
        policy: Optional[WritePolicy] = None,
        vetoes: Optional[VetoRegistry] = None,
        schema: Optional[Mapping[str, Any]] = None,
        config: Optional["Config"] = None,
        sink: Optional[logging.Logger] = None,
    ):
        """Initialize the store and load the current row from storage.

        Args:
            main_key: Name of the row holding every option of this store
            backend: Physical row store
            context: Storage scope; site scope when omitted
            autoload: Autoload hint applied when the row is first created
            policy: Write policy consulted first by the gate
            vetoes: Veto callbacks consulted after the policy
            schema: Rules registered right after the initial load
            config: Passed to default resolvers
            sink: Logger receiving gate, persistence and schema records
        """
        self.log = sink or logger

        if not main_key or not str(main_key).strip():
            self.log.error("OptionsStore: main_key cannot be empty")
            raise ConfigurationError("OptionsStore: main_key cannot be empty")

        self._main_key = str(main_key).strip()
        self._backend = backend
        self._context = context or StorageContext.for_site()
        self._autoload = bool(autoload)
        self._config = config
        self._gate = WriteGate(policy, vetoes, self.log)
        self._schema = SchemaRegistry()
        self._storage: Optional[StorageAdapter] = None

        self._options: dict[str, Any] = self._read_main_option()
        self.log.debug(
            f"Initialized store '{self._main_key}' with {len(self._options)} existing option(s)",
            extra={"context": {"main_key": self._main_key, "scope": self._context.scope.value}},
        )

        if schema:
            self.register_schema(schema)

    # Named factories

    @classmethod
    def site(cls, main_key: str, backend: RowBackend, autoload: bool = True, **kwargs: Any) -> "OptionsStore":
        return cls(main_key, backend, StorageContext.for_site(), autoload, **kwargs)

    @classmethod
    def network(cls, main_key: str, backend: RowBackend, **kwargs: Any) -> "OptionsStore":
        """Network scope; autoload is not supported there."""
        return cls(main_key, backend, StorageContext.for_network(), False, **kwargs)

    @classmethod
    def blog(cls, main_key: str, backend: RowBackend, blog_id: int, **kwargs: Any) -> "OptionsStore":
        return cls(main_key, backend, StorageContext.for_blog(blog_id), False, **kwargs)

    @classmethod
    def user(
        cls,
        main_key: str,
        backend: RowBackend,
        user_id: int,
        user_storage: str | UserStorage = UserStorage.META,
        user_global: bool = False,
        **kwargs: Any,
    ) -> "OptionsStore":
        context = StorageContext.for_user(user_id, user_storage, user_global)
        return cls(main_key, backend, context, False, **kwargs)

    def with_context(self, context: StorageContext) -> "OptionsStore":
        """Clone this store onto another storage context.

        Schema, policy, vetoes, config and logger carry over; options are
        reloaded from the new context.
        """
        autoload = False if context.scope == Scope.USER else self._autoload
        clone = type(self)(
            self._main_key,
            self._backend,
            context,
            autoload,
            policy=self._gate.policy,
            vetoes=self._gate.vetoes,
            config=self._config,
            sink=self.log,
        )
        clone._schema.restore(self._schema.snapshot())
        return clone

    def with_policy(self, policy: WritePolicy) -> "OptionsStore":
        self._gate.policy = policy
        return self

    def with_schema(self, rules: Mapping[str, Any]) -> "OptionsStore":
        self.register_schema(rules)
        return self

    # Accessors

    @property
    def main_key(self) -> str:
        return self._main_key

    @property
    def storage_context(self) -> StorageContext:
        return self._context

    @property
    def schema(self) -> Mapping[str, Rule]:
        return self._schema.as_mapping()

    @property
    def write_policy(self) -> WritePolicy:
        return self._gate.policy

    @property
    def vetoes(self) -> VetoRegistry:
        return self._gate.vetoes

    @property
    def autoload(self) -> bool:
        return self._autoload

    @autoload.setter
    def autoload(self, value: bool) -> None:
        self._autoload = bool(value)

    def supports_autoload(self) -> bool:
        return self._get_storage().supports_autoload()

    def has_schema_key(self, key: str) -> bool:
        return key in self._schema

    @staticmethod
    def normalize_key(key: str) -> str:
        return normalize_key(key)

    def get_option(self, key: str, default: Any = None) -> Any:
        key = normalize_key(key)
        if key not in self._options:
            return default
        return copy.deepcopy(self._options[key])

    def get_options(self) -> dict[str, Any]:
        return copy.deepcopy(self._options)

    def has_option(self, key: str) -> bool:
        return normalize_key(key) in self._options

    def refresh_options(self) -> None:
        """Reload the in-memory map from storage, discarding staged changes."""
        self._options = self._read_main_option()

    # Schema

    def register_schema(self, rules: Mapping[str, Any]) -> bool:
        """Register rules, seed missing defaults and re-normalize existing values.

        Seeding and normalization only touch memory and are gated under
        ``register_schema``. On any error the previous schema is restored.

        Returns:
            Whether the in-memory options changed
        """
        if not rules:
            self.log.error("register_schema() called with empty schema")
            return False

        previous = self._schema.snapshot()
        options = dict(self._options)
        seeded: list[str] = []
        normalized_keys: list[str] = []

        try:
            keys = self._schema.register(rules)

            to_seed: dict[str, Any] = {}
            for key in keys:
                if key in options:
                    continue
                default = self._schema.resolve_default(key, self._config)
                if default is not ABSENT:
                    to_seed[key] = copy.deepcopy(self._schema.apply(key, default))

            if to_seed and self._allow(
                WriteOp.REGISTER_SCHEMA,
                WriteContext.for_register_schema(self._main_key, self._context, list(to_seed)),
            ):
                options.update(to_seed)
                seeded = list(to_seed)

            normalized: dict[str, Any] = {}
            for key in keys:
                if key in options:
                    value = self._schema.apply(key, options[key])
                    if not _strictly_equal(value, options[key]):
                        normalized[key] = copy.deepcopy(value)

            if normalized and self._allow(
                WriteOp.REGISTER_SCHEMA,
                WriteContext.for_register_schema(self._main_key, self._context, list(normalized)),
            ):
                options.update(normalized)
                normalized_keys = list(normalized)
        except Exception as e:
            self._schema.restore(previous)
            self.log.error(
                f"register_schema failed: {e}",
                extra={"context": {"exception_class": type(e).__name__}},
            )
            raise

        self._options = options
        self.log.debug(
            "Schema registered",
            extra={"context": {"keys": keys, "seeded": seeded, "normalized": normalized_keys}},
        )
        return bool(seeded or normalized_keys)

    # Staging

    def stage_option(self, key: str, value: Any) -> bool:
        """Sanitize, validate and stage one value in memory.

        Returns:
            False when the gate declined the write, True otherwise

        Raises:
            SchemaError: the key has no rule or the value is rejected
        """
        key = normalize_key(key)
        sanitized = self._schema.apply(key, value)

        if key in self._options and _strictly_equal(self._options[key], sanitized):
            return True

        wc = WriteContext.for_stage_option(self._main_key, self._context, key)
        if not self._allow(WriteOp.STAGE_OPTION, wc):
            return False

        self._options[key] = copy.deepcopy(sanitized)
        return True

    def stage_options(self, values: Mapping[str, Any]) -> bool:
        """Stage several values; any invalid value aborts the whole batch."""
        staged: dict[str, Any] = {}
        for raw_key, value in values.items():
            key = normalize_key(raw_key)
            staged[key] = copy.deepcopy(self._schema.apply(key, value))

        changed = {
            key: value
            for key, value in staged.items()
            if not (key in self._options and _strictly_equal(self._options[key], value))
        }
        if not changed:
            return True

        wc = WriteContext.for_stage_options(self._main_key, self._context, list(changed))
        if not self._allow(WriteOp.STAGE_OPTIONS, wc):
            return False

        self._options.update(changed)
        self.log.debug(
            f"Staged {len(changed)} option(s)",
            extra={"context": {"changed": len(changed), "keys": list(changed)[:10]}},
        )
        return True

    # Immediate writes

    def delete_option(self, key: str) -> bool:
        """Remove a key and persist the row immediately.

        Returns:
            False when the key is missing, the gate declined, or persistence failed
        """
        key = normalize_key(key)
        if key not in self._options:
            return False

        wc = WriteContext.for_delete_option(self._main_key, self._context, key)
        if not self._allow(WriteOp.DELETE_OPTION, wc):
            return False

        del self._options[key]
        return self._save_all(merge_from_db=False)

    def clear(self) -> bool:
        """Empty the row and persist it immediately."""
        wc = WriteContext.for_clear(self._main_key, self._context)
        if not self._allow(WriteOp.CLEAR, wc):
            return False

        self._options = {}
        return self._save_all(merge_from_db=False)

    def commit_merge(self) -> bool:
        """Persist memory shallow-merged over the stored row (memory wins)."""
        return self._save_all(merge_from_db=True)

    def commit_replace(self) -> bool:
        """Persist memory verbatim, dropping keys only present in storage."""
        return self._save_all(merge_from_db=False)

    def seed_if_missing(self, defaults: Mapping[str, Any]) -> bool:
        """Create the row from ``defaults`` when it does not exist yet.

        A stored falsy value (``0``, ``''``, ``False``) counts as present.

        Returns:
            True when the row was created
        """
        storage = self._get_storage()
        if storage.read(self._main_key) is not ABSENT:
            self.log.debug(f"seed_if_missing no-op; '{self._main_key}' already exists")
            return False

        normalized = self._normalize_values(defaults)

        wc = WriteContext.for_seed_if_missing(self._main_key, self._context, list(normalized))
        if not self._allow(WriteOp.SEED_IF_MISSING, wc):
            return False

        if not storage.create(self._main_key, normalized, self._autoload):
            # Another writer created the row first
            self.log.warning(
                f"seed_if_missing could not create '{self._main_key}'",
                extra={"context": wc.describe()},
            )
            self.refresh_options()
            return False

        self._options = normalized
        self.log.debug(
            f"seed_if_missing created '{self._main_key}' with {len(normalized)} default(s)",
            extra={"context": {"autoload": self._autoload}},
        )
        return True

    def migrate(self, transform: Migration) -> bool:
        """Rewrite the stored row through ``transform(current, store)``.

        Missing rows and unchanged results are no-ops. A non-mapping result
        is stored under the ``value`` key. Autoload is left untouched.

        Returns:
            True when the row was rewritten
        """
        storage = self._get_storage()
        current = storage.read(self._main_key)
        if current is ABSENT:
            self.log.debug(f"migrate no-op; '{self._main_key}' missing")
            return False

        new = transform(copy.deepcopy(current), self)
        if _strictly_equal(new, current):
            return False

        if isinstance(new, Mapping):
            normalized = self._normalize_values(new)
        else:
            normalized = self._normalize_values({RESERVED_VALUE_KEY: new})

        wc = WriteContext.for_migrate(self._main_key, self._context, list(normalized))
        if not self._allow(WriteOp.MIGRATE, wc):
            return False

        if not storage.update(self._main_key, normalized):
            self.log.warning(
                f"migrate could not update '{self._main_key}'",
                extra={"context": wc.describe()},
            )
            return False

        self._options = normalized
        self.log.debug(f"migrate updated '{self._main_key}'")
        return True

    # Internals

    def _allow(self, op: WriteOp, wc: WriteContext) -> bool:
        return self._gate.allow(op, wc)

    def _get_storage(self) -> StorageAdapter:
        if self._storage is None:
            self._storage = make_storage(self._context, self._backend)
        return self._storage

    def _normalize_values(self, values: Mapping[str, Any]) -> dict[str, Any]:
        normalized: dict[str, Any] = {}
        for raw_key, value in values.items():
            key = normalize_key(raw_key)
            normalized[key] = copy.deepcopy(self._schema.apply(key, value))
        return normalized

    def _read_main_option(self) -> dict[str, Any]:
        raw = self._get_storage().read(self._main_key)
        if not isinstance(raw, Mapping):
            self.log.debug("Main row missing or not a mapping; starting empty")
            return {}
        return dict(raw)

    def _save_all(self, merge_from_db: bool) -> bool:
        """Persist the in-memory row through the storage adapter.

        Creates the row with the autoload hint when it is missing, falling
        back to update when another writer created it first. Existing rows
        are only ever updated, so autoload is fixed at first creation.
        """
        storage = self._get_storage()
        to_save = dict(self._options)
        exists = False

        if merge_from_db:
            current = storage.read(self._main_key)
            if isinstance(current, Mapping):
                # A non-empty snapshot proves the row exists
                exists = bool(current)
                to_save = {**current, **self._options}

        wc = WriteContext.for_save_all(self._main_key, self._context, to_save, merge_from_db)
        if not self._allow(WriteOp.SAVE_ALL, wc):
            return False

        if not exists:
            exists = storage.read(self._main_key) is not ABSENT

        if exists:
            result = self._update_with_retry(storage, to_save)
        else:
            self.log.debug(
                f"Creating '{self._main_key}'",
                extra={"context": {"autoload": self._autoload}},
            )
            result = storage.create(self._main_key, to_save, self._autoload)
            if not result:
                self.log.debug("create() returned False; falling back to update()")
                result = self._update_with_retry(storage, to_save)

        if result:
            self._options = to_save

        self.log.debug(
            f"Saved '{self._main_key}': {result}",
            extra={"context": {"merge_from_db": merge_from_db, "result": result}},
        )
        return result

    def _update_with_retry(self, storage: StorageAdapter, payload: dict[str, Any]) -> bool:
        if storage.update(self._main_key, payload):
            return True

        self.log.debug("update() returned False; retrying once")
        if storage.update(self._main_key, payload):
            return True

        current = storage.read(self._main_key)
        if current is not ABSENT and structures_match(current, payload):
            self.log.warning("update() failed but stored row matches; treating as success")
            return True

        self.log.warning(
            f"Failed to persist '{self._main_key}'",
            extra={"context": {"scope": self._context.scope.value}},
        )
        return False

    def __repr__(self) -> str:
        return f"OptionsStore(main_key={self._main_key!r}, context={self._context.cache_key!r})"
