import pytest

from fund_sweeper.addresses import Layer
from fund_sweeper.errors import (
    ConfigError,
    ErrorClass,
    InvalidTransactionError,
    LedgerError,
    TransactionRejectedError,
    classify_error,
)
from fund_sweeper.fee_policy import FeeParams
from fund_sweeper.submitter import Submitter, transaction_hash
from fund_sweeper.transaction_builder import build_withdraw

from tests.conftest import CHAIN_CONTEXT, FakeLedger


@pytest.mark.asyncio
async def test_submit_routes_by_layer(identity):
    ledger = FakeLedger()
    ledger.runtime[identity.address] = 100
    tx = build_withdraw(b"\x00" * 21, 30, identity.public_key, nonce=0, fee=FeeParams(1, 7, 70))
    envelope = identity.signer.sign(tx, CHAIN_CONTEXT)

    result = await Submitter(ledger).submit(envelope)

    assert ledger.submitted == [envelope]
    assert result.layer is Layer.RUNTIME
    assert result.nonce == 0
    assert result.tx_hash == transaction_hash(envelope)


@pytest.mark.parametrize("exc, expected", [
    (LedgerError("connection reset"), ErrorClass.TRANSIENT),
    (TransactionRejectedError("insufficient balance", module="accounts", code=2), ErrorClass.TRANSIENT),
    (TransactionRejectedError("Signature verification failed"), ErrorClass.TERMINAL),
    (TransactionRejectedError("invalid chain context"), ErrorClass.TERMINAL),
    (ConfigError("missing"), ErrorClass.TERMINAL),
    (ValueError("odd"), ErrorClass.TRANSIENT),
    (InvalidTransactionError("Withdraw amount must be positive: 0"), ErrorClass.TERMINAL),
])
def test_error_classification(exc, expected):
    assert classify_error(exc) is expected


def test_rejection_message_names_module():
    exc = TransactionRejectedError("insufficient balance", module="accounts", code=2)
    assert str(exc) == "accounts (code 2): insufficient balance"
