"""
Ledger Client

Read and write access to both ledger layers through an Oasis node:
- Balances and nonces on the consensus and runtime layers
- Allowance lookups for the runtime bridge account
- Gas estimation (simulation) for consensus transactions
- Transaction submission and chain context lookup

Transport is gRPC with CBOR-encoded messages.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import cbor2
import grpc
from loguru import logger

from .errors import LedgerError, TransactionRejectedError
from .transaction_builder import ConsensusTransaction, encode_cbor, quantity_from_bytes


class LedgerClient(ABC):
    """What the sweep controller needs from a ledger node"""

    @abstractmethod
    async def consensus_balance(self, address: bytes) -> int: ...

    @abstractmethod
    async def runtime_balance(self, address: bytes) -> int: ...

    @abstractmethod
    async def consensus_nonce(self, address: bytes) -> int: ...

    @abstractmethod
    async def runtime_nonce(self, address: bytes) -> int: ...

    @abstractmethod
    async def allowance(self, owner: bytes, beneficiary: bytes) -> int: ...

    @abstractmethod
    async def estimate_gas(self, transaction: ConsensusTransaction, signer_public_key: bytes) -> int: ...

    @abstractmethod
    async def submit_consensus(self, envelope) -> Any: ...

    @abstractmethod
    async def submit_runtime(self, envelope) -> Any: ...

    @abstractmethod
    async def chain_context(self) -> str: ...

    async def close(self):
        """Release network resources (no-op by default)"""


# Status codes meaning the request never got a verdict from the node
TRANSPORT_STATUS_CODES = frozenset({
    grpc.StatusCode.UNAVAILABLE,
    grpc.StatusCode.DEADLINE_EXCEEDED,
    grpc.StatusCode.RESOURCE_EXHAUSTED,
    grpc.StatusCode.CANCELLED,
})


def channel_target(node_url: str) -> Tuple[str, bool]:
    """
    Split a node URL into a gRPC target and whether it needs TLS

    'https://grpc.oasis.io' -> ('grpc.oasis.io:443', True)
    'http://localhost:42280' -> ('localhost:42280', False)
    'unix:/serverdir/internal.sock' -> unchanged, plaintext
    """
    if node_url.startswith("unix:"):
        return node_url, False

    parsed = urlparse(node_url if "://" in node_url else f"https://{node_url}")
    secure = parsed.scheme != "http"
    port = parsed.port or (443 if secure else 80)
    return f"{parsed.hostname}:{port}", secure


class OasisNodeClient(LedgerClient):
    """
    LedgerClient backed by an Oasis node's gRPC endpoint

    Features:
    - One shared grpc.aio channel per client
    - Latest height / round for every read
    - Node-side failures mapped onto LedgerError / TransactionRejectedError
    """

    HEIGHT_LATEST = 0
    ROUND_LATEST = 2 ** 64 - 1

    def __init__(self, node_url: str, runtime_id: bytes, timeout_seconds: float = 30.0):
        """
        Initialize node client

        Args:
            node_url: Node endpoint, e.g. https://grpc.oasis.io
            runtime_id: 32-byte identifier of the runtime layer
            timeout_seconds: Per-request deadline
        """
        self.node_url = node_url.rstrip("/")
        self.target, self.secure = channel_target(self.node_url)
        self.runtime_id = runtime_id
        self.timeout_seconds = timeout_seconds
        self._channel: Optional[grpc.aio.Channel] = None
        self._methods: Dict[str, Any] = {}

        logger.info(f"Ledger client initialized: {self.target} ({'TLS' if self.secure else 'plaintext'})")

    def _get_channel(self):
        if self._channel is None:
            if self.secure:
                self._channel = grpc.aio.secure_channel(self.target, grpc.ssl_channel_credentials())
            else:
                self._channel = grpc.aio.insecure_channel(self.target)
            self._methods = {}
        return self._channel

    def _method(self, method: str):
        channel = self._get_channel()
        if method not in self._methods:
            # Responses stay raw bytes so decode failures map onto LedgerError
            self._methods[method] = channel.unary_unary(f"/{method}", request_serializer=encode_cbor)
        return self._methods[method]

    async def _call(self, method: str, request: Any, submission: bool = False) -> Any:
        """
        Unary gRPC call with a CBOR request and response

        Args:
            method: Fully qualified method, e.g. 'oasis-core.Consensus/SubmitTx'
            request: CBOR-encodable request value
            submission: Node errors mean the transaction was rejected

        Returns:
            Decoded response value, or None for empty responses
        """
        try:
            response = await self._method(method)(request, timeout=self.timeout_seconds)
        except grpc.aio.AioRpcError as e:
            code = e.code()
            error = f"{method} failed ({code.name}): {e.details()}"
            if submission and code not in TRANSPORT_STATUS_CODES:
                raise TransactionRejectedError(error, code=code.value[0]) from e
            raise LedgerError(error) from e

        if not response:
            return None

        try:
            return cbor2.loads(response)
        except (cbor2.CBORDecodeError, ValueError) as e:
            raise LedgerError(f"{method} returned undecodable payload: {e}") from e


    async def _runtime_query(self, runtime_method: str, args: Any) -> Any:
        response = await self._call("oasis-core.RuntimeClient/Query", {
            "runtime_id": self.runtime_id,
            "round": self.ROUND_LATEST,
            "method": runtime_method,
            "args": encode_cbor(args),
        })
        data = (response or {}).get("data")
        return cbor2.loads(data) if data else None

    async def consensus_balance(self, address: bytes) -> int:
        account = await self._call("oasis-core.Staking/Account", {
            "height": self.HEIGHT_LATEST,
            "owner": address,
        })
        general = (account or {}).get("general") or {}
        return quantity_from_bytes(general.get("balance", b""))

    async def runtime_balance(self, address: bytes) -> int:
        result = await self._runtime_query("consensus_accounts.Balance", {"address": address})
        return quantity_from_bytes((result or {}).get("balance", b""))

    async def consensus_nonce(self, address: bytes) -> int:
        nonce = await self._call("oasis-core.Consensus/GetSignerNonce", {
            "account_address": address,
            "height": self.HEIGHT_LATEST,
        })
        return nonce or 0

    async def runtime_nonce(self, address: bytes) -> int:
        nonce = await self._runtime_query("accounts.Nonce", {"address": address})
        return nonce or 0

    async def allowance(self, owner: bytes, beneficiary: bytes) -> int:
        amount = await self._call("oasis-core.Staking/Allowance", {
            "height": self.HEIGHT_LATEST,
            "owner": owner,
            "beneficiary": beneficiary,
        })
        return quantity_from_bytes(amount or b"")

    async def estimate_gas(self, transaction: ConsensusTransaction, signer_public_key: bytes) -> int:
        gas = await self._call("oasis-core.Consensus/EstimateGas", {
            "signer": signer_public_key,
            "transaction": transaction.to_cbor_value(),
        })
        if not isinstance(gas, int):
            raise LedgerError(f"Unexpected gas estimate: {gas!r}")
        return gas

    async def submit_consensus(self, envelope) -> Any:
        return await self._call("oasis-core.Consensus/SubmitTx", envelope.to_cbor_value(), submission=True)

    async def submit_runtime(self, envelope) -> Any:
        raw_result = await self._call("oasis-core.RuntimeClient/SubmitTx", {
            "runtime_id": self.runtime_id,
            "data": envelope.encode(),
        }, submission=True)

        result = cbor2.loads(raw_result) if isinstance(raw_result, bytes) and raw_result else raw_result
        if isinstance(result, dict) and "fail" in result:
            fail = result["fail"] or {}
            raise TransactionRejectedError(
                fail.get("message", "runtime call failed"),
                module=fail.get("module"),
                code=fail.get("code"),
            )
        return result.get("ok") if isinstance(result, dict) else result

    async def chain_context(self) -> str:
        context = await self._call("oasis-core.Consensus/GetChainContext", None)
        if not context:
            raise LedgerError("Node returned an empty chain context")
        return context

    async def close(self):
        """Close the gRPC channel, letting in-flight calls finish"""
        if self._channel is None:
            return

        try:
            await self._channel.close(grace=1.0)
            logger.debug("✓ Ledger client channel closed")
        finally:
            self._channel = None
            self._methods = {}
