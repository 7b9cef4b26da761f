"""
Hash primitives for QCC addresses and transaction identifiers.

All inputs go through :func:`qcc_core.canonical.canonicalize` first and
all digests are returned as lowercase hex strings, because the hex text
(not the raw digest) is what gets fed into the next hash.

    hash_hex(obj)   = SHA-256(canonical(obj))
    short_hash(obj) = RIPEMD-160(hash_hex(obj))
    checksum(h)     = hash_hex(hash_hex(h))[:4]
    id_hash(obj)    = short_hash(obj) + checksum(short_hash(obj))   # 44 hex
    time_hash(o, t) = hextime(t) + hash_hex(o)
    tx_hash(tx)     = time_hash(hash_hex(tx), tx["timestamp"])
"""

from __future__ import annotations

import hashlib
import time
from enum import Enum
from typing import Any, Callable

from Crypto.Hash import RIPEMD160

from qcc_core.canonical import canonicalize

# Width of the hex timestamp prefix in a time-hash.
HEX_TIME_SIZE = 14

# Address = 40 hex RIPEMD-160 + 4 hex checksum.
ADDRESS_LENGTH = 44
CHECKSUM_LENGTH = 4


class HashAlgorithm(Enum):
    SHA256 = "sha256"
    RIPEMD160 = "ripemd160"


def _sha256_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _ripemd160_digest(data: bytes) -> str:
    # hashlib's ripemd160 depends on the OpenSSL build; pycryptodome always has it
    return RIPEMD160.new(data).hexdigest()


_HASHERS: dict[HashAlgorithm, Callable[[bytes], str]] = {
    HashAlgorithm.SHA256: _sha256_digest,
    HashAlgorithm.RIPEMD160: _ripemd160_digest,
}


def crypto_hash(algo: HashAlgorithm, text: str) -> str:
    """Hash the UTF-8 bytes of *text* with *algo*, returning hex."""
    return _HASHERS[algo](text.encode("utf-8"))


def sha256_hex(text: str) -> str:
    return crypto_hash(HashAlgorithm.SHA256, text)


def ripemd160_hex(text: str) -> str:
    return crypto_hash(HashAlgorithm.RIPEMD160, text)


# ===================================================================
#  Composite hashes
# ===================================================================

def hash_hex(obj: Any) -> str:
    """SHA-256 of the canonical encoding of *obj*."""
    return sha256_hex(canonicalize(obj))


def short_hash(obj: Any) -> str:
    """RIPEMD-160 over the hex SHA-256 of *obj* (40 hex chars)."""
    return ripemd160_hex(hash_hex(obj))


def checksum(h: str) -> str:
    """First 4 hex characters of a double SHA-256 over *h*."""
    return hash_hex(hash_hex(h))[:CHECKSUM_LENGTH]


def id_hash(obj: Any) -> str:
    """Short hash followed by its checksum (44 hex chars)."""
    sh = short_hash(obj)
    return sh + checksum(sh)


def address(public_key: str) -> str:
    """Derive the account address for a hex public key."""
    return id_hash(public_key)


# ===================================================================
#  Timestamps
# ===================================================================

def utime() -> int:
    """Current wall-clock time in microseconds (millisecond resolution)."""
    return int(time.time() * 1000) * 1000


def hextime(utime_: int | None = None) -> str:
    """
    Hex timestamp prefix, zero-padded and cut to ``HEX_TIME_SIZE`` chars.

    Timestamps wider than 14 hex digits keep their *leading* 14 digits.
    The broadcast endpoint expects exactly this, so it is reproduced as-is.
    """
    if not isinstance(utime_, int) or isinstance(utime_, bool):
        utime_ = utime()
    if utime_ < 0:
        raise ValueError("timestamp must be non-negative")
    return format(utime_, "x").rjust(HEX_TIME_SIZE, "0")[:HEX_TIME_SIZE]


def time_hash(obj: Any, utime_: int) -> str:
    return hextime(utime_) + hash_hex(obj)


def tx_hash(tx: dict) -> str:
    """The message that is signed for a transaction payload."""
    return time_hash(hash_hex(tx), tx["timestamp"])


def string_to_bytes(text: str) -> bytes:
    """One byte per UTF-16 code unit, truncated to its low 8 bits."""
    raw = text.encode("utf-16-be", "surrogatepass")
    return bytes(raw[i + 1] for i in range(0, len(raw), 2))
