"""
Tests for the gRPC node client, with the channel replaced
"""

import cbor2
import grpc
import pytest

from fund_sweeper.errors import LedgerError, TransactionRejectedError
from fund_sweeper.ledger_client import OasisNodeClient, channel_target
from fund_sweeper.transaction_builder import quantity_to_bytes

from tests.conftest import RUNTIME_ID


ADDRESS = b"\x00" + b"\x44" * 20


def rpc_error(code, details=""):
    return grpc.aio.AioRpcError(code, grpc.aio.Metadata(), grpc.aio.Metadata(), details=details)


class FakeChannel:
    """Stands in for grpc.aio.Channel; responses are raw bytes or exceptions"""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests = []
        self.closed = False

    def unary_unary(self, method, request_serializer=None, response_deserializer=None):
        async def call(request, timeout=None):
            self.requests.append((method, request_serializer(request), timeout))
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

        return call

    async def close(self, grace=None):
        self.closed = True


def make_client(monkeypatch, channel):
    client = OasisNodeClient("https://node.example", RUNTIME_ID, timeout_seconds=5.0)
    monkeypatch.setattr(client, "_get_channel", lambda: channel)
    return client


def request_value(channel, index=0):
    _, data, _ = channel.requests[index]
    return cbor2.loads(data)


@pytest.mark.parametrize("url, target, secure", [
    ("https://grpc.oasis.io", "grpc.oasis.io:443", True),
    ("grpc.oasis.io", "grpc.oasis.io:443", True),
    ("http://localhost:42280", "localhost:42280", False),
    ("unix:/serverdir/internal.sock", "unix:/serverdir/internal.sock", False),
])
def test_channel_target(url, target, secure):
    assert channel_target(url) == (target, secure)


@pytest.mark.asyncio
async def test_consensus_balance(monkeypatch):
    channel = FakeChannel([cbor2.dumps({"general": {"balance": quantity_to_bytes(1000)}})])
    client = make_client(monkeypatch, channel)

    assert await client.consensus_balance(ADDRESS) == 1000

    method, _, timeout = channel.requests[0]
    assert method == "/oasis-core.Staking/Account"
    assert timeout == 5.0
    assert request_value(channel) == {"height": 0, "owner": ADDRESS}


@pytest.mark.asyncio
async def test_empty_account_has_zero_balance(monkeypatch):
    channel = FakeChannel([cbor2.dumps({})])
    client = make_client(monkeypatch, channel)

    assert await client.consensus_balance(ADDRESS) == 0


@pytest.mark.asyncio
async def test_runtime_balance_via_query(monkeypatch):
    data = cbor2.dumps({"balance": quantity_to_bytes(5 * 10 ** 18)})
    channel = FakeChannel([cbor2.dumps({"data": data})])
    client = make_client(monkeypatch, channel)

    assert await client.runtime_balance(ADDRESS) == 5 * 10 ** 18

    query = request_value(channel)
    assert query["runtime_id"] == RUNTIME_ID
    assert query["method"] == "consensus_accounts.Balance"
    assert cbor2.loads(query["args"]) == {"address": ADDRESS}


@pytest.mark.asyncio
async def test_nonce_and_allowance(monkeypatch):
    channel = FakeChannel([cbor2.dumps(7), cbor2.dumps(quantity_to_bytes(250))])
    client = make_client(monkeypatch, channel)

    assert await client.consensus_nonce(ADDRESS) == 7
    assert await client.allowance(ADDRESS, b"\x00" * 21) == 250


@pytest.mark.asyncio
async def test_query_error_is_ledger_error(monkeypatch):
    channel = FakeChannel([rpc_error(grpc.StatusCode.INTERNAL, "staking: account not found")])
    client = make_client(monkeypatch, channel)

    with pytest.raises(LedgerError) as exc_info:
        await client.consensus_balance(ADDRESS)

    assert not isinstance(exc_info.value, TransactionRejectedError)
    assert "account not found" in str(exc_info.value)


@pytest.mark.asyncio
async def test_undecodable_payload_is_ledger_error(monkeypatch):
    channel = FakeChannel([b"\xff\xff"])
    client = make_client(monkeypatch, channel)

    with pytest.raises(LedgerError):
        await client.consensus_nonce(ADDRESS)


@pytest.mark.asyncio
async def test_unreachable_node_during_submission_is_not_a_rejection(monkeypatch):
    channel = FakeChannel([rpc_error(grpc.StatusCode.UNAVAILABLE, "connection refused")])
    client = make_client(monkeypatch, channel)

    class Envelope:
        def to_cbor_value(self):
            return {"untrusted_raw_value": b"raw", "signature": {}}

    with pytest.raises(LedgerError) as exc_info:
        await client.submit_consensus(Envelope())

    assert not isinstance(exc_info.value, TransactionRejectedError)


@pytest.mark.asyncio
async def test_submit_rejection(monkeypatch):
    channel = FakeChannel([rpc_error(grpc.StatusCode.UNKNOWN, "signature verification failed")])
    client = make_client(monkeypatch, channel)

    class Envelope:
        def to_cbor_value(self):
            return {"untrusted_raw_value": b"raw", "signature": {}}

    with pytest.raises(TransactionRejectedError) as exc_info:
        await client.submit_consensus(Envelope())

    assert "signature verification failed" in str(exc_info.value)
    assert exc_info.value.code == grpc.StatusCode.UNKNOWN.value[0]


@pytest.mark.asyncio
async def test_runtime_call_failure(monkeypatch):
    result = cbor2.dumps({"fail": {"module": "accounts", "code": 2, "message": "insufficient balance"}})
    channel = FakeChannel([cbor2.dumps(result)])
    client = make_client(monkeypatch, channel)

    class Envelope:
        def encode(self):
            return b"signed"

    with pytest.raises(TransactionRejectedError) as exc_info:
        await client.submit_runtime(Envelope())

    assert exc_info.value.module == "accounts"
    assert exc_info.value.code == 2
    assert request_value(channel) == {"runtime_id": RUNTIME_ID, "data": b"signed"}


@pytest.mark.asyncio
async def test_chain_context(monkeypatch):
    channel = FakeChannel([cbor2.dumps("abc123"), cbor2.dumps("")])
    client = make_client(monkeypatch, channel)

    assert await client.chain_context() == "abc123"
    with pytest.raises(LedgerError):
        await client.chain_context()


@pytest.mark.asyncio
async def test_close_releases_channel(monkeypatch):
    channel = FakeChannel()
    client = OasisNodeClient("http://localhost:42280", RUNTIME_ID)
    client._channel = channel

    await client.close()
    await client.close()

    assert channel.closed
    assert client._channel is None
