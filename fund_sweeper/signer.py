"""
Transaction Signer

Holds the ed25519 key for one identity and produces signed envelopes.
The raw key never leaves this object.
"""

from dataclasses import dataclass
from typing import Union

import cbor2
from nacl.signing import SigningKey
from loguru import logger

from .addresses import Layer, sha512_256
from .errors import InvalidTransactionError
from .transaction_builder import ConsensusTransaction, RuntimeTransaction, encode_cbor


CONSENSUS_TX_CONTEXT = "oasis-core/consensus: tx"
RUNTIME_TX_CONTEXT = "oasis-runtime-sdk/tx: v0"


def chain_separated_context(base: str, chain_context: str) -> bytes:
    return f"{base} for chain {chain_context}".encode()


def runtime_chain_context(runtime_id: bytes, chain_context: str) -> str:
    """Chain context of a runtime, bound to its consensus chain"""
    return sha512_256(runtime_id, chain_context.encode()).hex()


def prepare_message(context: bytes, raw: bytes) -> bytes:
    """Digest that actually gets signed: SHA-512/256(context || raw)"""
    return sha512_256(context, raw)


@dataclass(frozen=True)
class SignedEnvelope:
    """Signed transaction, consumed once by the submitter"""
    layer: Layer
    transaction: Union[ConsensusTransaction, RuntimeTransaction]
    raw: bytes
    public_key: bytes
    signature: bytes

    @property
    def nonce(self) -> int:
        return self.transaction.nonce

    def to_cbor_value(self):
        if self.layer is Layer.CONSENSUS:
            return {
                "untrusted_raw_value": self.raw,
                "signature": {
                    "public_key": self.public_key,
                    "signature": self.signature,
                },
            }
        # UnverifiedTransaction: (body, [auth proofs])
        return [self.raw, [{"signature": self.signature}]]

    def encode(self) -> bytes:
        return encode_cbor(self.to_cbor_value())


class Signer:
    """
    ed25519 signer bound to a single key

    Both layers sign SHA-512/256(context || raw body), where the context is
    separated by chain so a signature for one network never verifies on another.
    """

    def __init__(self, seed: bytes, runtime_id: bytes):
        """
        Args:
            seed: 32-byte ed25519 private key seed
            runtime_id: 32-byte runtime identifier used for runtime signatures
        """
        if len(seed) != 32:
            raise ValueError(f"ed25519 seed must be 32 bytes, got {len(seed)}")
        self._signing_key = SigningKey(seed)
        self._runtime_id = runtime_id
        self.public_key: bytes = bytes(self._signing_key.verify_key)

    def __repr__(self):
        return f"Signer(public_key={self.public_key.hex()[:16]}...)"

    def context_for(self, layer: Layer, chain_context: str) -> bytes:
        if layer is Layer.CONSENSUS:
            return chain_separated_context(CONSENSUS_TX_CONTEXT, chain_context)
        return chain_separated_context(
            RUNTIME_TX_CONTEXT,
            runtime_chain_context(self._runtime_id, chain_context),
        )

    def sign(
        self,
        transaction: Union[ConsensusTransaction, RuntimeTransaction],
        chain_context: str
    ) -> SignedEnvelope:
        """
        Sign a transaction body for the given network

        Args:
            transaction: Unsigned body from the transaction builder
            chain_context: Consensus chain context fetched at startup

        Returns:
            SignedEnvelope ready for submission
        """
        if not chain_context:
            raise InvalidTransactionError("Chain context is required for signing")

        layer = Layer.CONSENSUS if isinstance(transaction, ConsensusTransaction) else Layer.RUNTIME

        if layer is Layer.RUNTIME and transaction.signer_public_key != self.public_key:
            raise InvalidTransactionError("Runtime transaction names a different signer")

        raw = transaction.encode()
        context = self.context_for(layer, chain_context)
        signature = self._signing_key.sign(prepare_message(context, raw)).signature

        logger.debug(f"Signed {transaction.method} (nonce {transaction.nonce}) for {layer.value} layer")

        return SignedEnvelope(
            layer=layer,
            transaction=transaction,
            raw=raw,
            public_key=self.public_key,
            signature=signature,
        )


def decode_envelope_body(envelope: SignedEnvelope) -> dict:
    """Decode the signed raw body back into plain CBOR values"""
    return cbor2.loads(envelope.raw)
