"""
Fee Policies

Per-layer fee handling:
- FixedFee: runtime layer, conservative constant gas limit from config
- EstimatedFee: consensus layer, gas estimated by simulating the transaction

Also holds the unit conversion between the two layers' denominations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from .ledger_client import LedgerClient


def scale_factor(runtime_decimals: int, consensus_decimals: int) -> int:
    """Multiplier from consensus base units to runtime base units"""
    if runtime_decimals < consensus_decimals:
        raise ValueError(
            f"Runtime decimals ({runtime_decimals}) must not be below consensus decimals ({consensus_decimals})"
        )
    return 10 ** (runtime_decimals - consensus_decimals)


def consensus_to_runtime(amount: int, scale: int) -> int:
    return amount * scale


def whole_consensus_units(amount: int, scale: int) -> int:
    """Largest runtime amount <= `amount` that the consensus layer can represent"""
    if amount <= 0:
        return 0
    return amount - amount % scale


def runtime_to_consensus(amount: int, scale: int) -> int:
    """Exact inverse of consensus_to_runtime; refuses to drop precision"""
    whole, remainder = divmod(amount, scale)
    if remainder:
        raise ValueError(f"{amount} is not a whole number of consensus units (scale {scale})")
    return whole


@dataclass(frozen=True)
class FeeParams:
    """(price, gas limit) pair plus the resulting fee amount"""
    gas_price: int
    gas_limit: int
    amount: int


class FeePolicy(ABC):
    """How one layer arrives at its fee parameters"""

    @abstractmethod
    async def fee_for(self, transaction: Any, signer_public_key: bytes) -> FeeParams: ...


class FixedFee(FeePolicy):
    """
    Fixed gas limit, fee deducted from the swept amount

    fee = gas_price * gas_limit * scale

    The gas limit is configuration; it has to follow the runtime's gas schedule
    when the runtime is upgraded.
    """

    def __init__(self, gas_price: int, gas_limit: int, scale: int = 1):
        if gas_price < 0 or gas_limit <= 0:
            raise ValueError(f"Invalid fixed fee parameters: price={gas_price}, gas={gas_limit}")
        self.gas_price = gas_price
        self.gas_limit = gas_limit
        self.scale = scale

    def __repr__(self):
        return f"FixedFee(price={self.gas_price}, gas={self.gas_limit}, scale={self.scale})"

    @property
    def params(self) -> FeeParams:
        return FeeParams(
            gas_price=self.gas_price,
            gas_limit=self.gas_limit,
            amount=self.gas_price * self.gas_limit * self.scale,
        )

    async def fee_for(self, transaction: Any, signer_public_key: bytes) -> FeeParams:
        return self.params


class EstimatedFee(FeePolicy):
    """Gas from a simulation call against current chain state, never cached"""

    def __init__(self, client: "LedgerClient", gas_price: int = 0):
        self.client = client
        self.gas_price = gas_price

    def __repr__(self):
        return f"EstimatedFee(price={self.gas_price})"

    async def fee_for(self, transaction: Any, signer_public_key: bytes) -> FeeParams:
        gas = await self.client.estimate_gas(transaction, signer_public_key)
        logger.debug(f"Estimated gas for {transaction.method}: {gas}")
        return FeeParams(gas_price=self.gas_price, gas_limit=gas, amount=self.gas_price * gas)
