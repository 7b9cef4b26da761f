"""
``.qcc`` key files.

A key file is base64 text in the OpenSSL "Salted__" layout that
CryptoJS produces for ``AES.encrypt(text, passphrase)``:

    base64( b"Salted__" || salt[8] || AES-256-CBC(PKCS#7(plaintext)) )

with key and IV derived by ``EVP_BytesToKey`` (MD5, one round).  The
plaintext is JSON::

    {"wallet": {"private_key", "public_key", "address", "mnemonic", "symbol"},
     "timestamp": <ms since epoch>}

Files written by the browser wallet are encrypted with a fixed shared
secret (``LEGACY_KEYFILE_SECRET``).  Anyone holding that string can read
them, so treat a key file like a raw private key.  The secret is
configurable for deployments that re-encrypt their files.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from Crypto.Cipher import AES
from Crypto.Hash import MD5
from Crypto.Random import get_random_bytes
from Crypto.Util.Padding import pad, unpad

from qcc_core.canonical import js_stringify
from qcc_core.errors import InvalidKeyError, KeyFileError
from qcc_core.wallet import Wallet

logger = logging.getLogger("qcc_keyfile")

LEGACY_KEYFILE_SECRET = "sasuel_gold_secret_v1"
KEYFILE_EXTENSION = ".qcc"

_SALTED = b"Salted__"
_SALT_SIZE = 8
_KEY_SIZE = 32

_WALLET_FIELDS = ("private_key", "public_key", "address", "mnemonic", "symbol")


# ===================================================================
#  CryptoJS-compatible AES
# ===================================================================

def _evp_bytes_to_key(passphrase: bytes, salt: bytes,
                      key_len: int = _KEY_SIZE, iv_len: int = AES.block_size) -> tuple[bytes, bytes]:
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = MD5.new(block + passphrase + salt).digest()
        derived += block
    return derived[:key_len], derived[key_len:key_len + iv_len]


def encrypt_text(plaintext: str, secret: str, salt: bytes | None = None) -> str:
    """Encrypt *plaintext* exactly as ``CryptoJS.AES.encrypt(text, secret)``."""
    salt = salt if salt is not None else get_random_bytes(_SALT_SIZE)
    if len(salt) != _SALT_SIZE:
        raise ValueError("salt must be 8 bytes")
    key, iv = _evp_bytes_to_key(secret.encode("utf-8"), salt)
    cipher = AES.new(key, AES.MODE_CBC, iv=iv)
    ciphertext = cipher.encrypt(pad(plaintext.encode("utf-8"), AES.block_size))
    return base64.b64encode(_SALTED + salt + ciphertext).decode("ascii")


def decrypt_text(ciphertext: str, secret: str) -> str:
    """Inverse of :func:`encrypt_text`; raises :class:`KeyFileError` on failure."""
    try:
        raw = base64.b64decode(ciphertext.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise KeyFileError("Key file is not valid base64") from None
    if not raw.startswith(_SALTED) or len(raw) < len(_SALTED) + _SALT_SIZE + AES.block_size:
        raise KeyFileError("Key file is missing the salted header")

    salt = raw[len(_SALTED):len(_SALTED) + _SALT_SIZE]
    body = raw[len(_SALTED) + _SALT_SIZE:]
    if len(body) % AES.block_size:
        raise KeyFileError("Key file ciphertext is truncated")
    key, iv = _evp_bytes_to_key(secret.encode("utf-8"), salt)
    try:
        plain = unpad(AES.new(key, AES.MODE_CBC, iv=iv).decrypt(body), AES.block_size)
        return plain.decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        raise KeyFileError("Key file could not be decrypted (wrong secret?)") from None


# ===================================================================
#  Key file contents
# ===================================================================

@dataclass
class KeyFile:
    wallet: Wallet
    timestamp: int

    def to_dict(self) -> dict:
        return {"wallet": self.wallet.to_dict(), "timestamp": self.timestamp}


def _now_ms() -> int:
    return int(time.time() * 1000)


def export_keyfile(wallet: Wallet, secret: str = LEGACY_KEYFILE_SECRET,
                   timestamp: int | None = None) -> str:
    """Encrypted key-file text for *wallet*."""
    info = KeyFile(wallet, timestamp if timestamp is not None else _now_ms())
    return encrypt_text(js_stringify(info.to_dict()), secret)


def import_keyfile(text: str, secret: str = LEGACY_KEYFILE_SECRET) -> KeyFile:
    """
    Decrypt and validate key-file text.

    Accepts the current ``{wallet, timestamp}`` layout, the older layout
    that also carried ``recipients``, and a bare wallet object.
    """
    try:
        parsed = json.loads(decrypt_text(text, secret))
    except json.JSONDecodeError:
        raise KeyFileError("Key file does not contain JSON") from None
    if not isinstance(parsed, dict):
        raise KeyFileError("Invalid wallet format")

    if isinstance(parsed.get("wallet"), dict):
        wallet_data = parsed["wallet"]
        timestamp = parsed.get("timestamp")
        if timestamp is None:
            timestamp = _now_ms()
        elif not isinstance(timestamp, int) or isinstance(timestamp, bool):
            raise KeyFileError("Invalid wallet format - timestamp must be an integer")
    else:
        wallet_data = parsed
        timestamp = _now_ms()

    if not wallet_data.get("address") or not wallet_data.get("private_key"):
        raise KeyFileError("Invalid wallet format - missing required fields")
    for name in _WALLET_FIELDS:
        if wallet_data.get(name) is not None and not isinstance(wallet_data[name], str):
            raise KeyFileError(f"Invalid wallet format - {name} must be a string")
    try:
        wallet = Wallet.from_dict(wallet_data)
    except (InvalidKeyError, TypeError, ValueError, AttributeError) as exc:
        raise KeyFileError(f"Invalid wallet in key file: {exc}") from None

    logger.info("Imported key file for %s", wallet.address)
    return KeyFile(wallet, timestamp)


def write_keyfile(path: str | Path, wallet: Wallet,
                  secret: str = LEGACY_KEYFILE_SECRET) -> Path:
    p = Path(path)
    if p.suffix != KEYFILE_EXTENSION:
        raise KeyFileError(f"Key files must use the {KEYFILE_EXTENSION} extension")
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(export_keyfile(wallet, secret), encoding="utf-8")
    return p


def read_keyfile(path: str | Path, secret: str = LEGACY_KEYFILE_SECRET) -> KeyFile:
    p = Path(path)
    if p.suffix != KEYFILE_EXTENSION:
        raise KeyFileError(f"Key files must use the {KEYFILE_EXTENSION} extension")
    return import_keyfile(p.read_text(encoding="utf-8"), secret)
