"""
Sweep Policies

Which actions a run may take, and the fixed priority among them.
"""

from enum import Enum
from typing import FrozenSet

from .addresses import Layer


class ActionKind(Enum):
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"
    DEPOSIT = "deposit"
    NONE = "none"


# First satisfied rule wins
ACTION_PRIORITY = (ActionKind.WITHDRAW, ActionKind.TRANSFER, ActionKind.DEPOSIT)


class SweepPolicy(Enum):
    DEPOSIT_ONLY = "deposit_only"
    WITHDRAW_ONLY = "withdraw_only"
    WITHDRAW_THEN_TRANSFER = "withdraw_then_transfer"

    @property
    def rules(self) -> FrozenSet[ActionKind]:
        return POLICY_RULES[self]

    @property
    def destination_layer(self) -> Layer:
        """Deposits land on the runtime; withdrawals and transfers on consensus"""
        if self is SweepPolicy.DEPOSIT_ONLY:
            return Layer.RUNTIME
        return Layer.CONSENSUS

    @property
    def uses_intermediate(self) -> bool:
        return ActionKind.TRANSFER in self.rules


POLICY_RULES = {
    SweepPolicy.DEPOSIT_ONLY: frozenset({ActionKind.DEPOSIT}),
    SweepPolicy.WITHDRAW_ONLY: frozenset({ActionKind.WITHDRAW}),
    SweepPolicy.WITHDRAW_THEN_TRANSFER: frozenset({ActionKind.WITHDRAW, ActionKind.TRANSFER}),
}
