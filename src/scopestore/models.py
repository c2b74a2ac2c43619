"""Core data models for scopestore."""

import copy
import json
import re
from enum import Enum
from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import ConfigurationError

_UNSAFE_KEY_CHARS = re.compile(r"[^a-z0-9_\-]")


def normalize_key(key: Any) -> str:
    """Normalize an option key.

    Keys are lower-cased, stripped of every character outside
    ``[a-z0-9_-]`` and trimmed of leading/trailing separators.
    """
    return _UNSAFE_KEY_CHARS.sub("", str(key).lower()).strip("_-")


def to_canonical_json(obj: Any) -> str:
    """Convert object to canonical JSON string with sorted keys and
    consistent formatting.

    Args:
        obj: Object to serialize (a mapping, a list or a Pydantic model)

    Returns:
        Canonical JSON string; values JSON cannot encode are rendered
        with ``repr()``
    """

    def sort_recursive(value: Any) -> Any:
        """Recursively sort dictionary keys."""
        if isinstance(value, dict):
            return {str(k): sort_recursive(v) for k, v in sorted(value.items(), key=lambda i: str(i[0]))}
        if isinstance(value, (list, tuple)):
            return [sort_recursive(v) for v in value]
        return value

    if hasattr(obj, "model_dump"):
        # Pydantic model
        data = obj.model_dump(exclude_unset=True)
    else:
        data = obj

    return json.dumps(
        sort_recursive(data),
        separators=(",", ":"),
        sort_keys=True,
        ensure_ascii=False,
        default=repr,
    )


def structures_match(left: Any, right: Any) -> bool:
    """Compare two option payloads structurally, ignoring mapping key order."""
    return to_canonical_json(left) == to_canonical_json(right)


class Missing(Enum):
    """Tag returned by storage reads when the backend row does not exist."""

    ABSENT = "absent"

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = Missing.ABSENT


class Scope(str, Enum):
    """Storage scope enumeration."""

    SITE = "site"
    NETWORK = "network"
    BLOG = "blog"
    USER = "user"


class UserStorage(str, Enum):
    """Backing store kind for user scope."""

    META = "meta"
    OPTION = "option"


class WriteOp(str, Enum):
    """Mutating operations that pass through the write gate."""

    STAGE_OPTION = "stage_option"
    STAGE_OPTIONS = "stage_options"
    DELETE_OPTION = "delete_option"
    CLEAR = "clear"
    SEED_IF_MISSING = "seed_if_missing"
    MIGRATE = "migrate"
    REGISTER_SCHEMA = "register_schema"
    SAVE_ALL = "save_all"


def _positive_id(value: Any, field: str, factory: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"StorageContext.{factory} requires a positive {field}")
    return value


def _user_storage(value: Union[str, UserStorage], factory: str) -> UserStorage:
    kind = value.value if isinstance(value, UserStorage) else str(value).lower()
    if kind not in (UserStorage.META.value, UserStorage.OPTION.value):
        raise ConfigurationError(
            f"StorageContext.{factory}: user_storage must be 'meta' or 'option'"
        )
    return UserStorage(kind)


class StorageContext(BaseModel):
    """Immutable descriptor selecting a storage scope and its parameters.

    Prefer the ``for_*`` factories; they validate scope parameters before
    the model is built.
    """

    model_config = ConfigDict(frozen=True)

    scope: Scope = Field(Scope.SITE, description="Storage scope")
    blog_id: int | None = Field(None, description="Target blog id (blog scope)")
    user_id: int | None = Field(None, description="Target user id (user scope)")
    user_storage: UserStorage = Field(
        UserStorage.META, description="User storage kind (user scope)"
    )
    user_global: bool = Field(
        False, description="Network-wide user option storage (user scope)"
    )

    @model_validator(mode="after")
    def check_scope_parameters(self) -> "StorageContext":
        """Reject blog/user contexts that lack their target id."""
        if self.scope == Scope.BLOG:
            _positive_id(self.blog_id, "blog_id", "for_blog")
        elif self.scope == Scope.USER:
            _positive_id(self.user_id, "user_id", "for_user")
        return self

    @classmethod
    def for_site(cls) -> "StorageContext":
        return cls(scope=Scope.SITE)

    @classmethod
    def for_network(cls) -> "StorageContext":
        return cls(scope=Scope.NETWORK)

    @classmethod
    def for_blog(cls, blog_id: int) -> "StorageContext":
        return cls(scope=Scope.BLOG, blog_id=_positive_id(blog_id, "blog_id", "for_blog"))

    @classmethod
    def for_user(
        cls,
        user_id: int,
        user_storage: Union[str, UserStorage] = UserStorage.META,
        user_global: bool = False,
    ) -> "StorageContext":
        """Create a user-scoped context.

        Args:
            user_id: Positive user id
            user_storage: 'meta' (default) or 'option'
            user_global: For option storage, whether to use network-wide storage
        """
        return cls(
            scope=Scope.USER,
            user_id=_positive_id(user_id, "user_id", "for_user"),
            user_storage=_user_storage(user_storage, "for_user"),
            user_global=bool(user_global),
        )

    @property
    def cache_key(self) -> str:
        """Unique string identifying this context."""
        parts = [self.scope.value]
        if self.blog_id is not None:
            parts.append(f"blog:{self.blog_id}")
        if self.user_id is not None:
            parts.append(f"user:{self.user_id}")
            if self.user_storage != UserStorage.META:
                parts.append(f"storage:{self.user_storage.value}")
            if self.user_global:
                parts.append("global")
        return "|".join(parts)


class WriteContext(BaseModel):
    """Immutable snapshot describing one intended mutation.

    Built through the per-operation factories, which check that the fields
    the operation needs are present.
    """

    model_config = ConfigDict(frozen=True)

    op: WriteOp = Field(..., description="Operation name")
    main_key: str = Field(..., description="Main row name")
    scope: Scope = Field(..., description="Storage scope")
    blog_id: int | None = Field(None, description="Blog id (blog scope)")
    user_id: int | None = Field(None, description="User id (user scope)")
    user_storage: UserStorage | None = Field(None, description="User storage kind")
    user_global: bool = Field(False, description="Global user option storage")
    key: str | None = Field(None, description="Affected key (single-key ops)")
    keys: tuple[str, ...] | None = Field(None, description="Affected keys (batch ops)")
    payload: dict[str, Any] | None = Field(None, description="Full row (save_all)")
    merge_from_db: bool = Field(False, description="Shallow merge with backend row")

    @classmethod
    def _build(
        cls, op: WriteOp, main_key: str, context: StorageContext, **fields: Any
    ) -> "WriteContext":
        if not main_key:
            raise ConfigurationError("WriteContext: field main_key must be non-empty")
        if "key" in fields and not fields["key"]:
            raise ConfigurationError("WriteContext: field key must be non-empty")
        if "keys" in fields:
            if not fields["keys"]:
                raise ConfigurationError("WriteContext: field keys must be a non-empty list")
            fields["keys"] = tuple(str(k) for k in fields["keys"])

        scope_fields: dict[str, Any] = {}
        if context.scope == Scope.BLOG:
            scope_fields["blog_id"] = context.blog_id
        elif context.scope == Scope.USER:
            scope_fields["user_id"] = context.user_id
            scope_fields["user_storage"] = context.user_storage
            scope_fields["user_global"] = context.user_global

        return cls(op=op, main_key=main_key, scope=context.scope, **scope_fields, **fields)

    @classmethod
    def for_stage_option(cls, main_key: str, context: StorageContext, key: str) -> "WriteContext":
        return cls._build(WriteOp.STAGE_OPTION, main_key, context, key=key)

    @classmethod
    def for_stage_options(
        cls, main_key: str, context: StorageContext, keys: list[str]
    ) -> "WriteContext":
        return cls._build(WriteOp.STAGE_OPTIONS, main_key, context, keys=keys)

    @classmethod
    def for_delete_option(cls, main_key: str, context: StorageContext, key: str) -> "WriteContext":
        return cls._build(WriteOp.DELETE_OPTION, main_key, context, key=key)

    @classmethod
    def for_clear(cls, main_key: str, context: StorageContext) -> "WriteContext":
        return cls._build(WriteOp.CLEAR, main_key, context)

    @classmethod
    def for_seed_if_missing(
        cls, main_key: str, context: StorageContext, keys: list[str]
    ) -> "WriteContext":
        return cls._build(WriteOp.SEED_IF_MISSING, main_key, context, keys=keys)

    @classmethod
    def for_migrate(cls, main_key: str, context: StorageContext, keys: list[str]) -> "WriteContext":
        return cls._build(WriteOp.MIGRATE, main_key, context, keys=keys)

    @classmethod
    def for_register_schema(
        cls, main_key: str, context: StorageContext, keys: list[str]
    ) -> "WriteContext":
        return cls._build(WriteOp.REGISTER_SCHEMA, main_key, context, keys=keys)

    @classmethod
    def for_save_all(
        cls,
        main_key: str,
        context: StorageContext,
        payload: dict[str, Any],
        merge_from_db: bool,
    ) -> "WriteContext":
        return cls._build(
            WriteOp.SAVE_ALL,
            main_key,
            context,
            payload=copy.deepcopy(dict(payload)),
            merge_from_db=merge_from_db,
        )

    def touched_keys(self) -> list[str] | None:
        """Keys this operation writes, or None for whole-row operations like clear."""
        if self.key is not None:
            return [self.key]
        if self.keys is not None:
            return list(self.keys)
        if self.payload is not None:
            return list(self.payload.keys())
        return None

    def describe(self) -> dict[str, Any]:
        """Compact record for log output (payload values omitted)."""
        record: dict[str, Any] = {
            "op": self.op.value,
            "main_key": self.main_key,
            "scope": self.scope.value,
        }
        if self.blog_id is not None:
            record["blog_id"] = self.blog_id
        if self.user_id is not None:
            record["user_id"] = self.user_id
            record["user_storage"] = self.user_storage.value if self.user_storage else None
            record["user_global"] = self.user_global
        if self.key is not None:
            record["key"] = self.key
        if self.keys is not None:
            record["keys"] = list(self.keys)
        if self.payload is not None:
            record["payload_keys"] = sorted(self.payload.keys())
        if self.merge_from_db:
            record["merge_from_db"] = True
        return record


def export_json_schemas(output_dir: Path) -> None:
    """Export JSON schemas for the context models to the specified directory.

    Args:
        output_dir: Directory to export schemas to
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    schemas = {
        "StorageContext": StorageContext.model_json_schema(),
        "WriteContext": WriteContext.model_json_schema(),
    }

    for name, schema in schemas.items():
        schema_file = output_dir / f"{name.lower()}.json"
        with open(schema_file, "w", encoding="utf-8") as f:
            json.dump(schema, f, indent=2, sort_keys=True)
        print(f"Exported {name} schema to {schema_file}")
