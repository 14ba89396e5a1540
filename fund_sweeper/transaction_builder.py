"""
Transaction Builder

Pure constructors for the three sweep transaction shapes:
1. Deposit  - staking.Allow on consensus, then consensus.Deposit on the runtime
2. Withdraw - consensus.Withdraw on the runtime
3. Transfer - staking.Transfer on consensus

Bodies are frozen dataclasses; the signer consumes each one exactly once.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict

import cbor2

from .errors import InvalidTransactionError
from .fee_policy import FeeParams


METHOD_ALLOW = "staking.Allow"
METHOD_TRANSFER = "staking.Transfer"
METHOD_DEPOSIT = "consensus.Deposit"
METHOD_WITHDRAW = "consensus.Withdraw"

RUNTIME_TX_VERSION = 1
NATIVE_DENOMINATION = b""


def encode_cbor(value: Any) -> bytes:
    return cbor2.dumps(value, canonical=True)


def quantity_to_bytes(amount: int) -> bytes:
    """Big-endian, minimal length; zero is the empty string"""
    if amount < 0:
        raise InvalidTransactionError(f"Quantity cannot be negative: {amount}")
    if amount == 0:
        return b""
    return amount.to_bytes((amount.bit_length() + 7) // 8, "big")


def quantity_from_bytes(data: bytes) -> int:
    return int.from_bytes(data, "big") if data else 0


@dataclass(frozen=True)
class ConsensusTransaction:
    """Unsigned consensus-layer transaction (staking.Allow / staking.Transfer)"""
    method: str
    nonce: int
    account: bytes  # beneficiary for Allow, recipient for Transfer
    amount: int
    negative: bool = False
    fee_gas: int = 0
    fee_amount: int = 0

    def with_gas(self, gas: int) -> "ConsensusTransaction":
        return replace(self, fee_gas=gas)

    def body_value(self) -> Dict[str, Any]:
        if self.method == METHOD_ALLOW:
            body = {
                "beneficiary": self.account,
                "amount_change": quantity_to_bytes(self.amount),
            }
            if self.negative:
                body["negative"] = True
            return body
        return {
            "to": self.account,
            "amount": quantity_to_bytes(self.amount),
        }

    def to_cbor_value(self) -> Dict[str, Any]:
        return {
            "nonce": self.nonce,
            "fee": {
                "gas": self.fee_gas,
                "amount": quantity_to_bytes(self.fee_amount),
            },
            "method": self.method,
            "body": self.body_value(),
        }

    def encode(self) -> bytes:
        return encode_cbor(self.to_cbor_value())


@dataclass(frozen=True)
class RuntimeTransaction:
    """Unsigned runtime-layer transaction (consensus.Deposit / consensus.Withdraw)"""
    method: str
    nonce: int
    to: bytes
    amount: int
    signer_public_key: bytes
    fee_gas: int
    fee_amount: int = 0
    consensus_messages: int = 1

    def to_cbor_value(self) -> Dict[str, Any]:
        fee = {
            "amount": [quantity_to_bytes(self.fee_amount), NATIVE_DENOMINATION],
            "gas": self.fee_gas,
        }
        if self.consensus_messages:
            fee["consensus_messages"] = self.consensus_messages

        return {
            "v": RUNTIME_TX_VERSION,
            "call": {
                "method": self.method,
                "body": {
                    "to": self.to,
                    "amount": [quantity_to_bytes(self.amount), NATIVE_DENOMINATION],
                },
            },
            "ai": {
                "si": [{
                    "address_spec": {"signature": {"ed25519": self.signer_public_key}},
                    "nonce": self.nonce,
                }],
                "fee": fee,
            },
        }

    def encode(self) -> bytes:
        return encode_cbor(self.to_cbor_value())


def build_allowance(beneficiary: bytes, amount_change: int, nonce: int, gas: int = 0) -> ConsensusTransaction:
    """
    Allowance change for the runtime bridge account

    Args:
        beneficiary: Bridge account address (21 bytes)
        amount_change: Signed change; negative lowers the allowance
        nonce: Next consensus nonce of the signer
        gas: Gas limit, usually filled in after estimation

    Returns:
        Fee-free staking.Allow transaction
    """
    return ConsensusTransaction(
        method=METHOD_ALLOW,
        nonce=nonce,
        account=beneficiary,
        amount=abs(amount_change),
        negative=amount_change < 0,
        fee_gas=gas,
        fee_amount=0,
    )


def build_deposit(to: bytes, amount: int, signer_public_key: bytes, nonce: int, fee: FeeParams) -> RuntimeTransaction:
    """
    Runtime-side deposit pulling the allowance into the runtime

    Args:
        to: Runtime recipient address (21 bytes)
        amount: Amount in runtime base units (already scaled)
        signer_public_key: Public key of the depositing consensus account
        nonce: Runtime nonce of the signer
        fee: Runtime fee parameters; the deposit carries no fee amount
    """
    if amount <= 0:
        raise InvalidTransactionError(f"Deposit amount must be positive: {amount}")

    return RuntimeTransaction(
        method=METHOD_DEPOSIT,
        nonce=nonce,
        to=to,
        amount=amount,
        signer_public_key=signer_public_key,
        fee_gas=fee.gas_limit,
        fee_amount=0,
        consensus_messages=1,
    )


def build_withdraw(to: bytes, amount: int, signer_public_key: bytes, nonce: int, fee: FeeParams) -> RuntimeTransaction:
    """Runtime withdrawal of `amount` (balance minus fee) to a consensus address"""
    if amount <= 0:
        raise InvalidTransactionError(f"Withdraw amount must be positive: {amount}")

    return RuntimeTransaction(
        method=METHOD_WITHDRAW,
        nonce=nonce,
        to=to,
        amount=amount,
        signer_public_key=signer_public_key,
        fee_gas=fee.gas_limit,
        fee_amount=fee.amount,
        consensus_messages=1,
    )


def build_transfer(to: bytes, amount: int, nonce: int, gas: int = 0) -> ConsensusTransaction:
    if amount <= 0:
        raise InvalidTransactionError(f"Transfer amount must be positive: {amount}")

    return ConsensusTransaction(
        method=METHOD_TRANSFER,
        nonce=nonce,
        account=to,
        amount=amount,
        fee_gas=gas,
        fee_amount=0,
    )
