"""Write policies consulted first by the write gate."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Callable, Optional, Protocol, runtime_checkable

from .errors import ConfigurationError
from .models import Scope, WriteContext, WriteOp

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

# Capability checker: (capability, target_id) -> bool
CapabilityChecker = Callable[[str, Optional[int]], bool]


@runtime_checkable
class WritePolicy(Protocol):
    """Protocol for immutable write policies."""

    def allow(self, op: WriteOp, wc: WriteContext) -> bool:
        """Decide whether ``op`` described by ``wc`` may proceed.

        Args:
            op: Operation being gated
            wc: Frozen description of the mutation

        Returns:
            True to let the gate continue, False to decline the write
        """
        ...


def _as_op(value: object) -> WriteOp:
    try:
        return value if isinstance(value, WriteOp) else WriteOp(str(value).lower())
    except ValueError as e:
        raise ConfigurationError(f"Unknown write operation '{value}'") from e


class BaseWritePolicy:
    """Helpers shared by concrete policies; subclasses implement allow()."""

    def allow(self, op: WriteOp, wc: WriteContext) -> bool:
        raise NotImplementedError

    @staticmethod
    def scope_is(wc: WriteContext, scope: Scope | str) -> bool:
        return wc.scope.value == Scope(scope).value

    @staticmethod
    def scope_in(wc: WriteContext, scopes: Iterable[Scope | str]) -> bool:
        return any(wc.scope.value == Scope(scope).value for scope in scopes)

    @staticmethod
    def keys_whitelisted(wc: WriteContext, whitelist: Iterable[str]) -> bool:
        """Whether every key the operation touches is in ``whitelist``.

        Whole-row operations (clear) are never covered by a whitelist.
        """
        allowed = {str(k) for k in whitelist}
        touched = wc.touched_keys()
        if touched is None:
            return False
        if wc.op != WriteOp.SAVE_ALL and not touched:
            return False
        return all(key in allowed for key in touched)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class OperationPolicy(BaseWritePolicy):
    """Allow/deny matrix over operation names.

    ``allow=None`` admits every operation; ``deny`` always wins.
    """

    def __init__(
        self,
        allow: Optional[Iterable[WriteOp | str]] = None,
        deny: Iterable[WriteOp | str] = (),
    ):
        self._allow = None if allow is None else frozenset(_as_op(op) for op in allow)
        self._deny = frozenset(_as_op(op) for op in deny)

    @property
    def allowed_ops(self) -> Optional[frozenset[WriteOp]]:
        return self._allow

    @property
    def denied_ops(self) -> frozenset[WriteOp]:
        return self._deny

    def allow(self, op: WriteOp, wc: WriteContext) -> bool:
        if op in self._deny:
            return False
        return self._allow is None or op in self._allow

    def __repr__(self) -> str:
        allowed = "*" if self._allow is None else sorted(op.value for op in self._allow)
        return f"OperationPolicy(allow={allowed}, deny={sorted(op.value for op in self._deny)})"


class KeyWhitelistPolicy(BaseWritePolicy):
    """Only operations whose keys are all whitelisted may proceed."""

    def __init__(self, keys: Iterable[str]):
        self._keys = frozenset(str(k) for k in keys)

    @property
    def keys(self) -> frozenset[str]:
        return self._keys

    def allow(self, op: WriteOp, wc: WriteContext) -> bool:
        return self.keys_whitelisted(wc, self._keys)

    def __repr__(self) -> str:
        return f"KeyWhitelistPolicy(keys={sorted(self._keys)})"


class RestrictedDefaultWritePolicy(BaseWritePolicy):
    """Capability-based policy.

    Network writes need ``manage_network_options``; user writes need
    ``edit_user`` on the target user; everything else needs
    ``manage_options``. Only a strict ``True`` from the checker allows.
    """

    def __init__(self, can: CapabilityChecker):
        if not callable(can):
            raise ConfigurationError("RestrictedDefaultWritePolicy requires a callable checker")
        self._can = can

    def allow(self, op: WriteOp, wc: WriteContext) -> bool:
        if self.scope_is(wc, Scope.NETWORK):
            return self._can("manage_network_options", None) is True
        if self.scope_is(wc, Scope.USER):
            user_id = int(wc.user_id or 0)
            return user_id > 0 and self._can("edit_user", user_id) is True
        return self._can("manage_options", None) is True


def make_policy(config: "Config") -> WritePolicy:
    """Factory function to create a WritePolicy based on configuration.

    Args:
        config: scopestore configuration

    Returns:
        WritePolicy instance based on config.policy_driver
    """
    driver = config.policy_driver.lower()

    if driver == "operations":
        return OperationPolicy(allow=config.policy_allow, deny=config.policy_deny)
    elif driver == "whitelist":
        return KeyWhitelistPolicy(config.policy_keys)
    else:
        raise ConfigurationError(f"Unknown policy driver '{driver}'")


__all__ = [
    "WritePolicy",
    "BaseWritePolicy",
    "OperationPolicy",
    "KeyWhitelistPolicy",
    "RestrictedDefaultWritePolicy",
    "make_policy",
]
