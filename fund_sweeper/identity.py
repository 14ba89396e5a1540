"""
Identity Provider

Supplies the signing identity for a run:
- GENERATE: fresh 24-word mnemonic, shown once, lost with the process
- FROM_SECRET: existing mnemonic or raw 32-byte hex seed

Keys follow the ed25519 SLIP-10 path m/44'/474'/{index}'. Index 0 is the
controlled account, index 1 is the intermediate (quarantine) account.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from bip_utils import (
    Bip32Slip10Ed25519,
    Bip39MnemonicGenerator,
    Bip39MnemonicValidator,
    Bip39SeedGenerator,
    Bip39WordsNum,
)
from loguru import logger

from .addresses import address_from_public_key, to_bech32
from .errors import ConfigError
from .signer import Signer


COIN_TYPE = 474
CONTROLLED_ACCOUNT_INDEX = 0
INTERMEDIATE_ACCOUNT_INDEX = 1


class IdentitySource(Enum):
    GENERATE = "generate"
    FROM_SECRET = "from_secret"


@dataclass(frozen=True)
class Identity:
    """Signer plus the addresses derived from its public key"""
    signer: Signer = field(repr=False)
    address: bytes
    index: int = 0

    @property
    def public_key(self) -> bytes:
        return self.signer.public_key

    @property
    def bech32(self) -> str:
        return to_bech32(self.address)


def generate_mnemonic() -> str:
    return Bip39MnemonicGenerator().FromWordsNumber(Bip39WordsNum.WORDS_NUM_24).ToStr()


def derivation_path(index: int) -> str:
    return f"m/44'/{COIN_TYPE}'/{index}'"


def seed_from_mnemonic(mnemonic: str, index: int) -> bytes:
    """Private key seed for account `index` of a BIP-39 mnemonic"""
    if not Bip39MnemonicValidator().IsValid(mnemonic):
        raise ConfigError("Invalid BIP-39 mnemonic")

    bip39_seed = Bip39SeedGenerator(mnemonic).Generate()
    ctx = Bip32Slip10Ed25519.FromSeedAndPath(bip39_seed, derivation_path(index))
    return ctx.PrivateKey().Raw().ToBytes()


def identity_from_seed(seed: bytes, runtime_id: bytes, index: int = 0) -> Identity:
    signer = Signer(seed, runtime_id)
    return Identity(signer=signer, address=address_from_public_key(signer.public_key), index=index)


def _is_hex_seed(secret: str) -> bool:
    text = secret[2:] if secret.startswith("0x") else secret
    if len(text) != 64:
        return False
    try:
        bytes.fromhex(text)
    except ValueError:
        return False
    return True


@dataclass
class IdentityBundle:
    """Everything the controller needs about who signs"""
    identity: Identity
    intermediate: Optional[Identity]
    mnemonic: Optional[str] = field(default=None, repr=False)
    generated: bool = False


def load_identities(
    source: IdentitySource,
    runtime_id: bytes,
    secret: Optional[str] = None,
    with_intermediate: bool = False
) -> IdentityBundle:
    """
    Acquire the controlled identity (and intermediate account if needed)

    Args:
        source: GENERATE or FROM_SECRET
        runtime_id: Runtime identifier the signers bind their runtime signatures to
        secret: Mnemonic or 32-byte hex seed (FROM_SECRET only)
        with_intermediate: Also derive the intermediate account (index 1)

    Returns:
        IdentityBundle

    Raises:
        ConfigError: missing or unusable secret
    """
    mnemonic: Optional[str] = None

    if source is IdentitySource.GENERATE:
        mnemonic = generate_mnemonic()
        logger.info("Generated fresh 24-word mnemonic (not persisted)")
    else:
        if not secret or not secret.strip():
            raise ConfigError("Identity source 'from_secret' requires a mnemonic or hex seed")
        secret = secret.strip()
        if _is_hex_seed(secret):
            if with_intermediate:
                raise ConfigError("Intermediate account needs a mnemonic, not a raw seed")
            seed = bytes.fromhex(secret[2:] if secret.startswith("0x") else secret)
            identity = identity_from_seed(seed, runtime_id)
            logger.info(f"✓ Loaded identity from raw seed: {identity.bech32}")
            return IdentityBundle(identity=identity, intermediate=None)
        mnemonic = " ".join(secret.split())

    identity, intermediate = _derive_pair(mnemonic, runtime_id, with_intermediate)

    logger.info(f"✓ Controlled account: {identity.bech32}")
    if intermediate:
        logger.info(f"✓ Intermediate account: {intermediate.bech32}")

    return IdentityBundle(
        identity=identity,
        intermediate=intermediate,
        mnemonic=mnemonic,
        generated=source is IdentitySource.GENERATE,
    )


def _derive_pair(mnemonic: str, runtime_id: bytes, with_intermediate: bool) -> Tuple[Identity, Optional[Identity]]:
    identity = identity_from_seed(
        seed_from_mnemonic(mnemonic, CONTROLLED_ACCOUNT_INDEX), runtime_id, CONTROLLED_ACCOUNT_INDEX
    )
    intermediate = None
    if with_intermediate:
        intermediate = identity_from_seed(
            seed_from_mnemonic(mnemonic, INTERMEDIATE_ACCOUNT_INDEX), runtime_id, INTERMEDIATE_ACCOUNT_INDEX
        )
    return identity, intermediate
