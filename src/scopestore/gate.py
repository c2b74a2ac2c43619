"""Write gate: policy first, then general vetoes, then scope-specific vetoes."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .models import Scope, WriteContext, WriteOp
from .policy import OperationPolicy, WritePolicy

logger = logging.getLogger(__name__)

Veto = Callable[[WriteContext], bool]


class VetoRegistry:
    """Ordered veto callbacks, general and per scope.

    A callback allows a write only by returning exactly ``True``.
    """

    def __init__(self) -> None:
        self._general: list[Veto] = []
        self._scoped: dict[Scope, list[Veto]] = {}

    def subscribe(self, callback: Veto, scope: Optional[Scope | str] = None) -> Veto:
        """Subscribe a callback; usable as a decorator.

        Args:
            callback: Receives the frozen WriteContext and returns a bool
            scope: Restrict the callback to one scope; None for every scope
        """
        if not callable(callback):
            raise TypeError("Veto callback must be callable")
        if scope is None:
            self._general.append(callback)
        else:
            self._scoped.setdefault(Scope(scope), []).append(callback)
        return callback

    def unsubscribe(self, callback: Veto) -> None:
        if callback in self._general:
            self._general.remove(callback)
        for callbacks in self._scoped.values():
            if callback in callbacks:
                callbacks.remove(callback)

    def general(self) -> list[Veto]:
        return list(self._general)

    def scoped(self, scope: Scope) -> list[Veto]:
        return list(self._scoped.get(scope, []))

    def __len__(self) -> int:
        return len(self._general) + sum(len(v) for v in self._scoped.values())


class WriteGate:
    """Evaluate the three gate stages in order, short-circuiting on a denial."""

    def __init__(
        self,
        policy: Optional[WritePolicy] = None,
        vetoes: Optional[VetoRegistry] = None,
        sink: Optional[logging.Logger] = None,
    ):
        self.policy: WritePolicy = policy if policy is not None else OperationPolicy()
        self.vetoes = vetoes if vetoes is not None else VetoRegistry()
        self.log = sink or logger

    def allow(self, op: WriteOp, wc: WriteContext) -> bool:
        context = wc.describe()
        context["op"] = op.value

        policy_allowed = self.policy.allow(op, wc) is True
        self.log.debug(
            f"Policy decision for {op.value}: {policy_allowed}",
            extra={"context": {**context, "policy": repr(self.policy)}},
        )
        if not policy_allowed:
            self.log.info(f"Write {op.value} on '{wc.main_key}' declined by policy", extra={"context": context})
            return False

        for stage, callbacks in (
            ("general", self.vetoes.general()),
            (f"scope/{wc.scope.value}", self.vetoes.scoped(wc.scope)),
        ):
            for callback in callbacks:
                if callback(wc) is not True:
                    self.log.info(
                        f"Write {op.value} on '{wc.main_key}' vetoed ({stage})",
                        extra={"context": context},
                    )
                    return False

        self.log.debug(f"Write {op.value} on '{wc.main_key}' allowed", extra={"context": context})
        return True
