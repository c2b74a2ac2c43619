"""Tests for scopestore configuration loading."""

from pathlib import Path

import pytest

from scopestore.config import Config
from scopestore.errors import ConfigurationError
from scopestore.models import Scope, UserStorage
from scopestore.policy import KeyWhitelistPolicy, OperationPolicy, make_policy
from scopestore.schema import SchemaRegistry
from scopestore.storage import FileSystemBackend, MemoryBackend


def write_config(tmp_path: Path, content: str) -> Config:
    config_path = tmp_path / "scopestore.toml"
    config_path.write_text(content)
    return Config(config_path)


class TestConfig:
    """Test Config properties and helpers."""

    def test_defaults_without_file(self, tmp_path):
        config = Config(tmp_path / "scopestore.toml")

        assert config.main_key == "options"
        assert config.scope == "site"
        assert config.autoload is True
        assert config.storage_driver == "filesystem"
        assert config.storage_root == tmp_path / ".scopestore"
        assert config.policy_driver == "operations"
        assert config.policy_allow is None
        assert config.policy_deny == []
        assert config.log_level == "WARNING"
        assert config.schema_rules() == {}

    def test_dotted_get(self, tmp_path):
        config = write_config(tmp_path, '[store]\nmain_key = "plugin"\n')

        assert config.get("store.main_key") == "plugin"
        assert config.get("store.missing", 5) == 5
        assert config.get("store.main_key.deeper") is None

    def test_invalid_toml(self, tmp_path):
        with pytest.raises(ValueError, match="Invalid TOML"):
            write_config(tmp_path, "[store\n")

    def test_absolute_storage_root(self, tmp_path):
        root = tmp_path / "elsewhere"
        config = write_config(tmp_path, f'[storage]\nroot_path = "{root.as_posix()}"\n')

        assert config.storage_root == root


class TestStorageContextFromConfig:
    """Test building a storage context from [store]."""

    def test_blog(self, tmp_path):
        config = write_config(tmp_path, '[store]\nscope = "blog"\nblog_id = 4\n')

        context = config.storage_context
        assert context.scope == Scope.BLOG
        assert context.blog_id == 4

    def test_user(self, tmp_path):
        config = write_config(
            tmp_path,
            '[store]\nscope = "user"\nuser_id = 7\nuser_storage = "option"\nuser_global = true\n',
        )

        context = config.storage_context
        assert context.user_id == 7
        assert context.user_storage == UserStorage.OPTION
        assert context.user_global is True

    def test_missing_ids(self, tmp_path):
        with pytest.raises(ConfigurationError):
            write_config(tmp_path, '[store]\nscope = "blog"\n').storage_context

    def test_unknown_scope(self, tmp_path):
        with pytest.raises(ConfigurationError):
            write_config(tmp_path, '[store]\nscope = "galaxy"\n').storage_context


class TestFactoriesFromConfig:
    """Test backend, policy and schema construction."""

    def test_backends(self, tmp_path):
        assert isinstance(Config(tmp_path / "none.toml").make_backend(), FileSystemBackend)
        config = write_config(tmp_path, '[storage]\ndriver = "memory"\n')
        assert isinstance(config.make_backend(), MemoryBackend)

        with pytest.raises(ConfigurationError):
            write_config(tmp_path, '[storage]\ndriver = "redis"\n').make_backend()

    def test_policies(self, tmp_path):
        config = write_config(tmp_path, '[policy]\nallow = ["stage_option"]\ndeny = ["clear"]\n')
        policy = make_policy(config)
        assert isinstance(policy, OperationPolicy)
        assert policy.allowed_ops is not None and len(policy.allowed_ops) == 1

        config = write_config(tmp_path, '[policy]\ndriver = "whitelist"\nkeys = ["port"]\n')
        assert isinstance(make_policy(config), KeyWhitelistPolicy)

    def test_schema_rules(self, tmp_path):
        config = write_config(
            tmp_path,
            """
[schema.port]
type = "int"
min = 1
max = 65535
default = 80

[schema.mode]
type = "choice"
choices = ["a", "b"]
sanitize = ["strip"]
""",
        )

        registry = SchemaRegistry(config.schema_rules())
        assert registry.keys() == ["port", "mode"]
        assert registry.resolve_default("port") == 80
        assert registry.apply("mode", " b ") == "b"

    def test_schema_must_be_tables(self, tmp_path):
        config = write_config(tmp_path, '[schema]\nport = 5\n')

        with pytest.raises(ConfigurationError):
            config.schema_rules()
