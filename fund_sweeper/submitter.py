"""
Transaction Submitter

Hands signed envelopes to the ledger client and waits for the node's verdict.
Exactly one submission per built transaction: a failed submission is not
retried verbatim, the next cycle re-reads the nonce and builds a fresh one.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from loguru import logger

from .addresses import Layer, sha512_256
from .ledger_client import LedgerClient
from .signer import SignedEnvelope


@dataclass
class SubmitResult:
    """Node acknowledgment for one transaction"""
    layer: Layer
    method: str
    nonce: int
    tx_hash: str
    result: Optional[Any] = None
    submitted_at: Optional[datetime] = None


def transaction_hash(envelope: SignedEnvelope) -> str:
    return sha512_256(envelope.encode()).hex()


class Submitter:
    """Fire-and-wait submission through a LedgerClient"""

    def __init__(self, client: LedgerClient):
        self.client = client

    async def submit(self, envelope: SignedEnvelope) -> SubmitResult:
        """
        Submit a signed transaction and wait for acceptance

        Args:
            envelope: Signed transaction from the signer

        Returns:
            SubmitResult

        Raises:
            LedgerError / TransactionRejectedError: node unreachable or refused it
        """
        method = envelope.transaction.method
        tx_hash = transaction_hash(envelope)

        logger.info(f"Submitting {method} on {envelope.layer.value} layer (nonce {envelope.nonce}, hash {tx_hash[:16]}...)")

        if envelope.layer is Layer.CONSENSUS:
            result = await self.client.submit_consensus(envelope)
        else:
            result = await self.client.submit_runtime(envelope)

        logger.info(f"✓ {method} accepted (hash {tx_hash[:16]}...)")

        return SubmitResult(
            layer=envelope.layer,
            method=method,
            nonce=envelope.nonce,
            tx_hash=tx_hash,
            result=result,
            submitted_at=datetime.now(timezone.utc),
        )
