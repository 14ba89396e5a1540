"""
Layer Addresses

Address syntax checks and derivation for both ledger layers:
- Consensus layer: bech32 'oasis1...' strings over a 21-byte address
- Runtime layer: '0x' + 40 hex EVM addresses, mapped onto the same 21-byte form
"""

import hashlib
import re
from enum import Enum

from bip_utils.bech32 import Bech32ChecksumError, Bech32Decoder, Bech32Encoder

from .errors import InvalidDestinationError


class Layer(Enum):
    CONSENSUS = "consensus"
    RUNTIME = "runtime"


BECH32_HRP = "oasis"
ADDRESS_VERSION = 0
ADDRESS_SIZE = 21

STAKING_ADDRESS_CONTEXT = b"oasis-core/address: staking"
ETH_ADDRESS_CONTEXT = b"oasis-runtime-sdk/address: secp256k1eth"

EVM_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def sha512_256(*parts: bytes) -> bytes:
    """SHA-512/256 over the concatenation of parts"""
    h = hashlib.new("sha512_256")
    for part in parts:
        h.update(part)
    return h.digest()


def address_from_data(context: bytes, data: bytes, version: int = ADDRESS_VERSION) -> bytes:
    """
    Derive a 21-byte ledger address

    Args:
        context: Address derivation context identifier
        data: Public key or foreign address bytes
        version: Address version byte

    Returns:
        version byte followed by the first 20 bytes of the context hash
    """
    version_byte = bytes([version])
    return version_byte + sha512_256(context, version_byte, data)[:20]


def address_from_public_key(public_key: bytes) -> bytes:
    if len(public_key) != 32:
        raise ValueError(f"ed25519 public key must be 32 bytes, got {len(public_key)}")
    return address_from_data(STAKING_ADDRESS_CONTEXT, public_key)


def address_from_evm(evm_address: str) -> bytes:
    """Map a '0x...' runtime account onto its native 21-byte address"""
    if not EVM_ADDRESS_PATTERN.match(evm_address):
        raise ValueError(f"Not an EVM address: {evm_address!r}")
    return address_from_data(ETH_ADDRESS_CONTEXT, bytes.fromhex(evm_address[2:]))


def to_bech32(address: bytes) -> str:
    if len(address) != ADDRESS_SIZE:
        raise ValueError(f"Address must be {ADDRESS_SIZE} bytes, got {len(address)}")
    return Bech32Encoder.Encode(BECH32_HRP, address)


def from_bech32(text: str) -> bytes:
    try:
        address = Bech32Decoder.Decode(BECH32_HRP, text)
    except (Bech32ChecksumError, ValueError) as e:
        raise ValueError(f"Invalid bech32 address {text!r}: {e}") from e

    if len(address) != ADDRESS_SIZE:
        raise ValueError(f"Invalid address length {len(address)} for {text!r}")
    return address


def is_valid_address(text: str, layer: Layer) -> bool:
    if layer is Layer.RUNTIME:
        return bool(EVM_ADDRESS_PATTERN.match(text))

    try:
        from_bech32(text)
    except ValueError:
        return False
    return True


def validate_destination(text: str, layer: Layer) -> str:
    """
    Validate an operator supplied destination once, at startup

    Args:
        text: Address as typed by the operator
        layer: Layer the destination lives on

    Returns:
        Stripped address string

    Raises:
        InvalidDestinationError: address does not match the layer's syntax
    """
    address = (text or "").strip()
    if not address:
        raise InvalidDestinationError(f"Empty {layer.value} destination address")

    if not is_valid_address(address, layer):
        if layer is Layer.RUNTIME:
            raise InvalidDestinationError(f"Invalid runtime address {address!r}: expected 0x followed by 40 hex digits")
        raise InvalidDestinationError(f"Invalid consensus address {address!r}: expected bech32 '{BECH32_HRP}1...'")

    return address


def native_address(text: str) -> bytes:
    """21-byte address for either a bech32 or a 0x string"""
    if text.startswith("0x"):
        return address_from_evm(text)
    return from_bech32(text)
