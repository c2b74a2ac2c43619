"""Tests for scopestore context models and helpers."""

import json

import pytest
from pydantic import ValidationError

from scopestore.errors import ConfigurationError
from scopestore.models import (
    ABSENT,
    Scope,
    StorageContext,
    UserStorage,
    WriteContext,
    WriteOp,
    export_json_schemas,
    normalize_key,
    structures_match,
)


class TestNormalizeKey:
    """Test option key normalization."""

    def test_lower_cases_and_strips_unsafe_characters(self):
        assert normalize_key("Port") == "port"
        assert normalize_key("My Key!") == "mykey"
        assert normalize_key("api.url") == "apiurl"

    def test_trims_separators(self):
        assert normalize_key("__port--") == "port"
        assert normalize_key("-a_b-") == "a_b"

    def test_empty_result(self):
        assert normalize_key("!!!") == ""


class TestStructuresMatch:
    """Test canonical structure comparison."""

    def test_mapping_order_is_ignored(self):
        assert structures_match({"a": 1, "b": [1, 2]}, {"b": [1, 2], "a": 1})

    def test_list_order_matters(self):
        assert not structures_match([1, 2], [2, 1])

    def test_types_matter(self):
        assert not structures_match({"a": 1}, {"a": "1"})


class TestAbsentSentinel:
    """Test the absent marker used by storage reads."""

    def test_absent_is_distinct_from_falsy_values(self):
        for value in (0, "", False, None, [], {}):
            assert value is not ABSENT

    def test_repr(self):
        assert repr(ABSENT) == "ABSENT"


class TestStorageContext:
    """Test StorageContext factories and validation."""

    def test_site_and_network(self):
        assert StorageContext.for_site().scope == Scope.SITE
        assert StorageContext.for_network().scope == Scope.NETWORK

    def test_blog_requires_positive_id(self):
        assert StorageContext.for_blog(3).blog_id == 3
        with pytest.raises(ConfigurationError):
            StorageContext.for_blog(0)
        with pytest.raises(ConfigurationError):
            StorageContext.for_blog(None)

    def test_user_requires_positive_id(self):
        context = StorageContext.for_user(7, "option", True)
        assert context.user_id == 7
        assert context.user_storage == UserStorage.OPTION
        assert context.user_global is True

        with pytest.raises(ConfigurationError):
            StorageContext.for_user(-1)

    def test_user_storage_kind_is_checked(self):
        with pytest.raises(ConfigurationError):
            StorageContext.for_user(7, "session")

    def test_direct_construction_is_validated(self):
        with pytest.raises(ConfigurationError):
            StorageContext(scope=Scope.BLOG)

    def test_frozen(self):
        context = StorageContext.for_site()
        with pytest.raises(ValidationError):
            context.scope = Scope.NETWORK

    def test_cache_key_distinguishes_contexts(self):
        keys = {
            StorageContext.for_site().cache_key,
            StorageContext.for_network().cache_key,
            StorageContext.for_blog(2).cache_key,
            StorageContext.for_user(2).cache_key,
            StorageContext.for_user(2, "option").cache_key,
            StorageContext.for_user(2, "option", True).cache_key,
        }
        assert len(keys) == 6


class TestWriteContext:
    """Test WriteContext factories."""

    def test_stage_option_carries_scope_fields(self):
        wc = WriteContext.for_stage_option("opts", StorageContext.for_blog(4), "port")

        assert wc.op == WriteOp.STAGE_OPTION
        assert wc.scope == Scope.BLOG
        assert wc.blog_id == 4
        assert wc.user_id is None
        assert wc.key == "port"
        assert wc.touched_keys() == ["port"]

    def test_user_fields(self):
        wc = WriteContext.for_clear("opts", StorageContext.for_user(9, "option", True))

        assert wc.user_id == 9
        assert wc.user_storage == UserStorage.OPTION
        assert wc.user_global is True
        assert wc.touched_keys() is None

    def test_save_all_copies_payload(self):
        payload = {"a": 1}
        wc = WriteContext.for_save_all("opts", StorageContext.for_site(), payload, True)
        payload["b"] = 2

        assert wc.payload == {"a": 1}
        assert wc.merge_from_db is True
        assert wc.describe()["payload_keys"] == ["a"]

    def test_required_fields(self):
        site = StorageContext.for_site()
        with pytest.raises(ConfigurationError):
            WriteContext.for_clear("", site)
        with pytest.raises(ConfigurationError):
            WriteContext.for_stage_option("opts", site, "")
        with pytest.raises(ConfigurationError):
            WriteContext.for_stage_options("opts", site, [])

    def test_frozen(self):
        wc = WriteContext.for_migrate("opts", StorageContext.for_site(), ["a"])
        with pytest.raises(ValidationError):
            wc.key = "b"


def test_export_json_schemas(tmp_path):
    """Test JSON schema export for the context models."""
    export_json_schemas(tmp_path)

    for name in ("storagecontext", "writecontext"):
        schema_file = tmp_path / f"{name}.json"
        assert schema_file.exists()
        data = json.loads(schema_file.read_text())
        assert "properties" in data
