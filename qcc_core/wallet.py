"""
Wallet and key management for QCC.

A wallet is an Ed25519 key-pair plus the address derived from it:

  - BIP-39 mnemonic generation / validation (12-24 words)
  - mnemonic -> 64-byte seed -> SHA-256 -> 32-byte Ed25519 signing seed
  - hex private key -> public key -> address
  - detached Ed25519 signing over the canonical encoding of a value

Private keys are the 32-byte Ed25519 *seed* in hex (64 chars).  The
64-byte secret key some libraries expect is ``seed || public_key``;
PyNaCl builds that internally from the seed.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any

from mnemonic import Mnemonic
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from qcc_core.canonical import canonicalize
from qcc_core.crypto_utils import address as derive_address
from qcc_core.crypto_utils import string_to_bytes
from qcc_core.errors import InvalidKeyError, InvalidMnemonicError

SUPPORTED_MNEMONIC_LENGTH: tuple[int, ...] = (12, 15, 18, 21, 24)
DEFAULT_MNEMONIC_LENGTH = 12
DEFAULT_SYMBOL = "QTC"

# Hex characters in a private or public key.
KEY_SIZE = 64

_KEY_RE = re.compile(r"[a-fA-F0-9]{64}")


# ===================================================================
#  BIP-39 Mnemonic Support
# ===================================================================

_MNEMO: Mnemonic | None = None


def _get_mnemo() -> Mnemonic:
    global _MNEMO
    if _MNEMO is None:
        _MNEMO = Mnemonic("english")
    return _MNEMO


def _normalize_phrase(phrase: str) -> str:
    return " ".join(phrase.split())


def mnemonic_strength(word_count: int) -> int:
    """Entropy bits for a phrase of *word_count* words."""
    if word_count not in SUPPORTED_MNEMONIC_LENGTH:
        raise InvalidMnemonicError(
            f"Invalid mnemonic length {word_count}: expected one of "
            f"{', '.join(str(n) for n in SUPPORTED_MNEMONIC_LENGTH)}"
        )
    return (word_count // 3) * 32


def generate_mnemonic(word_count: int = DEFAULT_MNEMONIC_LENGTH) -> str:
    """Generate a new BIP-39 English mnemonic phrase."""
    return _get_mnemo().generate(strength=mnemonic_strength(word_count))


def validate_mnemonic(phrase: str) -> bool:
    """Check word count, wordlist membership and the BIP-39 checksum."""
    if not isinstance(phrase, str):
        return False
    phrase = _normalize_phrase(phrase)
    if len(phrase.split(" ")) not in SUPPORTED_MNEMONIC_LENGTH:
        return False
    return _get_mnemo().check(phrase)


def mnemonic_to_seed(phrase: str, passphrase: str = "") -> bytes:
    """Stretch a validated mnemonic into a 64-byte seed (PBKDF2-HMAC-SHA512)."""
    if not validate_mnemonic(phrase):
        raise InvalidMnemonicError("Invalid mnemonic phrase")
    return Mnemonic.to_seed(_normalize_phrase(phrase), passphrase=passphrase)


def private_key_from_seed(seed: bytes) -> str:
    """SHA-256 of the seed bytes, used directly as the Ed25519 seed."""
    return hashlib.sha256(seed).hexdigest()


# ===================================================================
#  Ed25519 keys
# ===================================================================

def validate_private_key(key: Any) -> bool:
    """True if *key* is exactly 64 hex characters."""
    return isinstance(key, str) and _KEY_RE.fullmatch(key) is not None


def _signing_key(private_key: str) -> SigningKey:
    if not validate_private_key(private_key):
        raise InvalidKeyError("Invalid private key: expected 64 hex characters")
    return SigningKey(bytes.fromhex(private_key))


def public_key(private_key: str) -> str:
    """Hex Ed25519 public key for a hex private key."""
    return bytes(_signing_key(private_key).verify_key).hex()


def generate_keypair_from_seed(seed: bytes) -> dict[str, str]:
    """Key-pair and address for a 32-byte Ed25519 seed."""
    if len(seed) != 32:
        raise InvalidKeyError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
    sk = SigningKey(seed)
    # first half of the 64-byte secret key is the seed itself
    private_key = bytes(sk).hex()[:KEY_SIZE]
    pub = bytes(sk.verify_key).hex()
    return {
        "private_key": private_key,
        "public_key": pub,
        "address": derive_address(pub),
    }


def sign(obj: Any, private_key: str) -> str:
    """Detached Ed25519 signature (hex) over the canonical bytes of *obj*."""
    sk = _signing_key(private_key)
    return sk.sign(string_to_bytes(canonicalize(obj))).signature.hex()


def verify(obj: Any, signature: str, public_key_hex: str) -> bool:
    """Verify a hex signature produced by :func:`sign`."""
    try:
        vk = VerifyKey(bytes.fromhex(public_key_hex))
        vk.verify(string_to_bytes(canonicalize(obj)), bytes.fromhex(signature))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


# ===================================================================
#  Wallet
# ===================================================================

class Wallet:
    """User-facing wallet: hex key-pair, address, and optional mnemonic."""

    def __init__(
        self,
        private_key: str,
        public_key_hex: str | None = None,
        address: str | None = None,
        mnemonic: str = "",
        symbol: str = DEFAULT_SYMBOL,
    ):
        if public_key_hex is not None and not isinstance(public_key_hex, str):
            raise InvalidKeyError("Public key must be a hex string")
        if address is not None and not isinstance(address, str):
            raise InvalidKeyError("Address must be a hex string")
        derived_pub = public_key(private_key)
        if public_key_hex and public_key_hex.lower() != derived_pub:
            raise InvalidKeyError("Public key does not match private key")
        derived_addr = derive_address(derived_pub)
        if address and address.lower() != derived_addr:
            raise InvalidKeyError("Address does not match private key")

        self.private_key = private_key
        self.public_key = derived_pub
        self.address = derived_addr
        self.mnemonic = mnemonic
        self.symbol = symbol

    # ---- factory methods ----

    @classmethod
    def create(cls, word_count: int = DEFAULT_MNEMONIC_LENGTH,
               symbol: str = DEFAULT_SYMBOL) -> Wallet:
        """Generate a fresh mnemonic and derive a wallet from it."""
        return cls.from_mnemonic(generate_mnemonic(word_count), symbol=symbol)

    @classmethod
    def from_mnemonic(cls, phrase: str, symbol: str = DEFAULT_SYMBOL) -> Wallet:
        """Restore a wallet from a BIP-39 phrase (no passphrase)."""
        seed = mnemonic_to_seed(phrase)
        keys = generate_keypair_from_seed(bytes.fromhex(private_key_from_seed(seed)))
        return cls(
            keys["private_key"],
            keys["public_key"],
            keys["address"],
            mnemonic=_normalize_phrase(phrase),
            symbol=symbol,
        )

    @classmethod
    def from_private_key(cls, private_key: str, symbol: str = DEFAULT_SYMBOL) -> Wallet:
        return cls(private_key, symbol=symbol)

    @classmethod
    def from_dict(cls, data: dict) -> Wallet:
        """Rebuild a wallet from its key-file representation."""
        try:
            private_key = data["private_key"]
        except (KeyError, TypeError):
            raise InvalidKeyError("Wallet data has no private_key") from None
        return cls(
            private_key,
            data.get("public_key") or None,
            data.get("address") or None,
            mnemonic=data.get("mnemonic") or "",
            symbol=data.get("symbol") or DEFAULT_SYMBOL,
        )

    # ---- signing ----

    def sign(self, obj: Any) -> str:
        return sign(obj, self.private_key)

    def signed_data(self, item: dict, payload_key: str = "transaction") -> dict:
        """Sign *item* with this wallet; see :func:`qcc_core.transaction.signed_data`."""
        from qcc_core.transaction import signed_data
        return signed_data(item, self.private_key, payload_key)

    # ---- serialisation ----

    def to_dict(self) -> dict:
        return {
            "private_key": self.private_key,
            "public_key": self.public_key,
            "address": self.address,
            "mnemonic": self.mnemonic,
            "symbol": self.symbol,
        }

    def __repr__(self) -> str:
        return f"Wallet({self.address})"
