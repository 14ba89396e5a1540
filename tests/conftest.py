"""
Pytest Configuration and Fixtures

In-memory two-layer ledger and fixed identities shared by the tests.
"""

import sys
from collections import defaultdict
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from fund_sweeper.addresses import address_from_evm, address_from_public_key, to_bech32
from fund_sweeper.errors import TransactionRejectedError
from fund_sweeper.fee_policy import runtime_to_consensus
from fund_sweeper.identity import identity_from_seed
from fund_sweeper.ledger_client import LedgerClient
from fund_sweeper.transaction_builder import (
    METHOD_ALLOW,
    METHOD_DEPOSIT,
    METHOD_TRANSFER,
    METHOD_WITHDRAW,
)


RUNTIME_ID = bytes.fromhex("000000000000000000000000000000000000000000000000f80306c9858e7279")
BRIDGE_ADDRESS = address_from_public_key(b"\xbb" * 32)
CHAIN_CONTEXT = "b11b369e0da5bb230b220127f5e7b242d385ef8c6f54906243f30af63c815535"
EVM_DESTINATION = "0x" + "ab" * 20
CONSENSUS_DESTINATION = to_bech32(address_from_public_key(b"\xdd" * 32))


class FakeLedger(LedgerClient):
    """
    Two-layer ledger kept in dictionaries

    Submissions are applied immediately and must carry the signer's current
    nonce, like a real node would require.
    """

    def __init__(self, scale: int = 1, gas: int = 1234, chain_context: str = CHAIN_CONTEXT):
        self.scale = scale
        self.gas = gas
        self.context = chain_context
        self.consensus = defaultdict(int)
        self.runtime = defaultdict(int)
        self.consensus_nonces = defaultdict(int)
        self.runtime_nonces = defaultdict(int)
        self.allowances = defaultdict(int)
        self.submitted = []
        self.estimates = []
        self.chain_context_calls = 0
        self.fail_on = {}  # method name -> list of exceptions to raise
        self.on_submit = None
        self.closed = False

    def _maybe_fail(self, name: str):
        errors = self.fail_on.get(name)
        if errors:
            raise errors.pop(0)

    async def consensus_balance(self, address):
        self._maybe_fail('consensus_balance')
        return self.consensus[address]

    async def runtime_balance(self, address):
        self._maybe_fail('runtime_balance')
        return self.runtime[address]

    async def consensus_nonce(self, address):
        self._maybe_fail('consensus_nonce')
        return self.consensus_nonces[address]

    async def runtime_nonce(self, address):
        self._maybe_fail('runtime_nonce')
        return self.runtime_nonces[address]

    async def allowance(self, owner, beneficiary):
        self._maybe_fail('allowance')
        return self.allowances[(owner, beneficiary)]

    async def estimate_gas(self, transaction, signer_public_key):
        self._maybe_fail('estimate_gas')
        self.estimates.append(transaction)
        return self.gas

    async def submit_consensus(self, envelope):
        if self.on_submit:
            self.on_submit(envelope)
        self._maybe_fail('submit_consensus')

        tx = envelope.transaction
        owner = address_from_public_key(envelope.public_key)
        if tx.nonce != self.consensus_nonces[owner]:
            raise TransactionRejectedError(f"invalid nonce {tx.nonce}")
        self.consensus_nonces[owner] += 1

        if tx.method == METHOD_ALLOW:
            change = -tx.amount if tx.negative else tx.amount
            self.allowances[(owner, tx.account)] += change
        elif tx.method == METHOD_TRANSFER:
            if self.consensus[owner] < tx.amount:
                raise TransactionRejectedError("staking: insufficient balance")
            self.consensus[owner] -= tx.amount
            self.consensus[tx.account] += tx.amount

        self.submitted.append(envelope)

    async def submit_runtime(self, envelope):
        if self.on_submit:
            self.on_submit(envelope)
        self._maybe_fail('submit_runtime')

        tx = envelope.transaction
        owner = address_from_public_key(tx.signer_public_key)
        if tx.nonce != self.runtime_nonces[owner]:
            raise TransactionRejectedError(f"invalid nonce {tx.nonce}")
        self.runtime_nonces[owner] += 1

        if tx.method == METHOD_DEPOSIT:
            consensus_amount = tx.amount // self.scale
            allowance = self.allowances[(owner, BRIDGE_ADDRESS)]
            if allowance < consensus_amount or self.consensus[owner] < consensus_amount:
                raise TransactionRejectedError("consensus: insufficient allowance")
            self.allowances[(owner, BRIDGE_ADDRESS)] -= consensus_amount
            self.consensus[owner] -= consensus_amount
            self.runtime[tx.to] += tx.amount
        elif tx.method == METHOD_WITHDRAW:
            if self.runtime[owner] < tx.amount + tx.fee_amount:
                raise TransactionRejectedError("accounts: insufficient balance")
            try:
                credited = runtime_to_consensus(tx.amount, self.scale)
            except ValueError as e:
                raise TransactionRejectedError(str(e), module="consensus_accounts", code=1)
            self.runtime[owner] -= tx.amount + tx.fee_amount
            self.consensus[tx.to] += credited

        self.submitted.append(envelope)
        return None

    async def chain_context(self):
        self.chain_context_calls += 1
        return self.context

    async def close(self):
        self.closed = True

    @property
    def methods(self):
        return [envelope.transaction.method for envelope in self.submitted]


class SleepRecorder:
    """Stands in for the inter-cycle wait"""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def identity():
    return identity_from_seed(b"\x01" * 32, RUNTIME_ID, 0)


@pytest.fixture
def intermediate():
    return identity_from_seed(b"\x02" * 32, RUNTIME_ID, 1)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def evm_destination_address():
    return address_from_evm(EVM_DESTINATION)
