"""Tests for write policies and the write gate."""

import logging

import pytest

from scopestore.errors import ConfigurationError
from scopestore.gate import VetoRegistry, WriteGate
from scopestore.models import Scope, StorageContext, WriteContext, WriteOp
from scopestore.policy import (
    BaseWritePolicy,
    KeyWhitelistPolicy,
    OperationPolicy,
    RestrictedDefaultWritePolicy,
    WritePolicy,
    make_policy,
)

SITE = StorageContext.for_site()


def stage(key="port", context=SITE):
    return WriteContext.for_stage_option("opts", context, key)


class TestOperationPolicy:
    """Test the allow/deny operation matrix."""

    def test_allows_everything_by_default(self):
        policy = OperationPolicy()

        assert isinstance(policy, WritePolicy)
        for op in WriteOp:
            assert policy.allow(op, stage()) is True

    def test_deny_wins(self):
        policy = OperationPolicy(allow=["stage_option", "clear"], deny=["clear"])

        assert policy.allow(WriteOp.STAGE_OPTION, stage()) is True
        assert policy.allow(WriteOp.CLEAR, stage()) is False
        assert policy.allow(WriteOp.SAVE_ALL, stage()) is False

    def test_unknown_operation(self):
        with pytest.raises(ConfigurationError):
            OperationPolicy(deny=["drop_table"])


class TestKeyWhitelistPolicy:
    """Test key whitelisting."""

    def test_single_key(self):
        policy = KeyWhitelistPolicy(["port"])

        assert policy.allow(WriteOp.STAGE_OPTION, stage("port")) is True
        assert policy.allow(WriteOp.STAGE_OPTION, stage("host")) is False

    def test_batch_keys(self):
        policy = KeyWhitelistPolicy(["port", "host"])

        ok = WriteContext.for_stage_options("opts", SITE, ["port", "host"])
        bad = WriteContext.for_stage_options("opts", SITE, ["port", "mode"])
        assert policy.allow(WriteOp.STAGE_OPTIONS, ok) is True
        assert policy.allow(WriteOp.STAGE_OPTIONS, bad) is False

    def test_save_all_checks_payload(self):
        policy = KeyWhitelistPolicy(["port"])

        ok = WriteContext.for_save_all("opts", SITE, {"port": 1}, False)
        empty = WriteContext.for_save_all("opts", SITE, {}, False)
        bad = WriteContext.for_save_all("opts", SITE, {"port": 1, "mode": "a"}, False)
        assert policy.allow(WriteOp.SAVE_ALL, ok) is True
        assert policy.allow(WriteOp.SAVE_ALL, empty) is True
        assert policy.allow(WriteOp.SAVE_ALL, bad) is False

    def test_clear_is_never_whitelisted(self):
        policy = KeyWhitelistPolicy(["port"])

        assert policy.allow(WriteOp.CLEAR, WriteContext.for_clear("opts", SITE)) is False


class TestRestrictedDefaultWritePolicy:
    """Test capability-based decisions."""

    def make(self, granted):
        calls = []

        def can(capability, target):
            calls.append((capability, target))
            return (capability, target) in granted

        return RestrictedDefaultWritePolicy(can), calls

    def test_site_and_blog_need_manage_options(self):
        policy, calls = self.make({("manage_options", None)})

        assert policy.allow(WriteOp.STAGE_OPTION, stage()) is True
        assert policy.allow(WriteOp.STAGE_OPTION, stage(context=StorageContext.for_blog(2))) is True
        assert calls == [("manage_options", None), ("manage_options", None)]

    def test_network_needs_manage_network_options(self):
        policy, _ = self.make({("manage_options", None)})
        context = StorageContext.for_network()

        assert policy.allow(WriteOp.STAGE_OPTION, stage(context=context)) is False

    def test_user_needs_edit_user_for_target(self):
        policy, calls = self.make({("edit_user", 7)})

        assert policy.allow(WriteOp.STAGE_OPTION, stage(context=StorageContext.for_user(7))) is True
        assert policy.allow(WriteOp.STAGE_OPTION, stage(context=StorageContext.for_user(8))) is False
        assert calls == [("edit_user", 7), ("edit_user", 8)]

    def test_truthy_non_bool_denies(self):
        policy = RestrictedDefaultWritePolicy(lambda capability, target: 1)

        assert policy.allow(WriteOp.STAGE_OPTION, stage()) is False

    def test_requires_callable(self):
        with pytest.raises(ConfigurationError):
            RestrictedDefaultWritePolicy("admin")


class TestBaseWritePolicy:
    """Test shared policy helpers."""

    def test_scope_helpers(self):
        wc = stage(context=StorageContext.for_blog(3))

        assert BaseWritePolicy.scope_is(wc, "blog")
        assert BaseWritePolicy.scope_is(wc, Scope.BLOG)
        assert not BaseWritePolicy.scope_is(wc, "site")
        assert BaseWritePolicy.scope_in(wc, ["site", "blog"])
        assert not BaseWritePolicy.scope_in(wc, ["network"])

    def test_subclass(self):
        class BlogOnly(BaseWritePolicy):
            def allow(self, op, wc):
                return self.scope_is(wc, Scope.BLOG)

        policy = BlogOnly()
        assert policy.allow(WriteOp.STAGE_OPTION, stage()) is False
        assert policy.allow(WriteOp.STAGE_OPTION, stage(context=StorageContext.for_blog(1))) is True


class TestWriteGate:
    """Test gate ordering and short-circuiting."""

    def test_default_allows(self):
        assert WriteGate().allow(WriteOp.STAGE_OPTION, stage()) is True

    def test_order_is_policy_general_scoped(self):
        order = []

        class RecordingPolicy(BaseWritePolicy):
            def allow(self, op, wc):
                order.append("policy")
                return True

        vetoes = VetoRegistry()
        vetoes.subscribe(lambda wc: order.append("scoped") or True, scope="site")
        vetoes.subscribe(lambda wc: order.append("general-1") or True)
        vetoes.subscribe(lambda wc: order.append("general-2") or True)

        assert WriteGate(RecordingPolicy(), vetoes).allow(WriteOp.STAGE_OPTION, stage()) is True
        assert order == ["policy", "general-1", "general-2", "scoped"]

    def test_policy_denial_skips_vetoes(self):
        called = []
        vetoes = VetoRegistry()
        vetoes.subscribe(lambda wc: called.append(wc) or True)

        gate = WriteGate(OperationPolicy(deny=["stage_option"]), vetoes)
        assert gate.allow(WriteOp.STAGE_OPTION, stage()) is False
        assert called == []

    def test_general_veto_short_circuits(self):
        called = []
        vetoes = VetoRegistry()
        vetoes.subscribe(lambda wc: False)
        vetoes.subscribe(lambda wc: called.append(wc) or True, scope=Scope.SITE)

        assert WriteGate(vetoes=vetoes).allow(WriteOp.STAGE_OPTION, stage()) is False
        assert called == []

    def test_scoped_veto_only_applies_to_its_scope(self):
        vetoes = VetoRegistry()
        vetoes.subscribe(lambda wc: False, scope="blog")
        gate = WriteGate(vetoes=vetoes)

        assert gate.allow(WriteOp.STAGE_OPTION, stage()) is True
        assert gate.allow(WriteOp.STAGE_OPTION, stage(context=StorageContext.for_blog(2))) is False

    def test_veto_must_return_true(self):
        vetoes = VetoRegistry()
        vetoes.subscribe(lambda wc: None)

        assert WriteGate(vetoes=vetoes).allow(WriteOp.STAGE_OPTION, stage()) is False

    def test_veto_receives_write_context(self):
        seen = []
        vetoes = VetoRegistry()

        @vetoes.subscribe
        def record(wc):
            seen.append(wc)
            return True

        wc = stage()
        WriteGate(vetoes=vetoes).allow(WriteOp.STAGE_OPTION, wc)
        assert seen == [wc]

    def test_unsubscribe(self):
        vetoes = VetoRegistry()
        deny = vetoes.subscribe(lambda wc: False, scope="site")
        assert len(vetoes) == 1

        vetoes.unsubscribe(deny)
        assert len(vetoes) == 0
        assert WriteGate(vetoes=vetoes).allow(WriteOp.STAGE_OPTION, stage()) is True

    def test_decisions_are_logged(self, caplog):
        sink = logging.getLogger("scopestore.test.gate")
        gate = WriteGate(OperationPolicy(deny=["clear"]), sink=sink)

        with caplog.at_level(logging.DEBUG, logger="scopestore.test.gate"):
            gate.allow(WriteOp.CLEAR, WriteContext.for_clear("opts", SITE))

        records = [r for r in caplog.records if r.name == "scopestore.test.gate"]
        assert any(r.levelno == logging.INFO and "declined by policy" in r.getMessage() for r in records)
        assert all(r.context["op"] == "clear" for r in records)


class TestMakePolicy:
    """Test the policy factory."""

    class FakeConfig:
        def __init__(self, driver, allow=None, deny=(), keys=()):
            self.policy_driver = driver
            self.policy_allow = allow
            self.policy_deny = list(deny)
            self.policy_keys = list(keys)

    def test_operations(self):
        policy = make_policy(self.FakeConfig("operations", deny=["clear"]))

        assert isinstance(policy, OperationPolicy)
        assert policy.denied_ops == frozenset({WriteOp.CLEAR})

    def test_whitelist(self):
        policy = make_policy(self.FakeConfig("whitelist", keys=["port"]))

        assert isinstance(policy, KeyWhitelistPolicy)
        assert policy.keys == frozenset({"port"})

    def test_unknown_driver(self):
        with pytest.raises(ConfigurationError):
            make_policy(self.FakeConfig("acl"))
