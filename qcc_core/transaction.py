"""
Signed transaction envelopes and broadcast request builders.

A signed envelope looks like::

    {
        "public_key": "<64 hex>",
        "signature":  "<128 hex>",
        "transaction": {"type": "Send", "to": ..., "amount": ...,
                        "timestamp": ..., "from": ...}
    }

The signature covers ``tx_hash(transaction)``: the 14-hex-digit time
prefix followed by the SHA-256 of the transaction's canonical SHA-256.
Key order inside the payload is significant because it feeds the hash.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any

from qcc_core.canonical import js_stringify
from qcc_core.crypto_utils import address, tx_hash, utime
from qcc_core.errors import InvalidKeyError, SigningError
from qcc_core.precision import from_base_units
from qcc_core.wallet import public_key, sign, validate_private_key, verify

logger = logging.getLogger("qcc_signing")

DEFAULT_PAYLOAD_KEY = "transaction"

# Transactions without a server timestamp are dated 2 s ahead.
TIMESTAMP_SKEW_US = 2_000_000

TX_TYPE_SEND = "Send"
TX_TYPE_TRANSFER = "Transfer"


def _is_timestamp(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _coerce_timestamp(value: Any) -> Any:
    """Whole floats become ints; fractional or non-finite floats are rejected."""
    if isinstance(value, float):
        if not value.is_integer():
            raise SigningError(f"Timestamp must be a whole number of microseconds, got {value!r}")
        return int(value)
    return value


def signed_data(
    item: dict,
    private_key: str,
    payload_key: str = DEFAULT_PAYLOAD_KEY,
    legacy_sentinel: bool = False,
) -> dict:
    """
    Sign *item* and wrap it in an envelope under *payload_key*.

    The caller's dict is not modified; the envelope holds a copy with
    ``from`` (and ``timestamp``, when missing) filled in.

    An invalid private key raises :class:`InvalidKeyError`.  With
    ``legacy_sentinel=True`` the old wallet behaviour is kept instead and
    ``{"public_key": "", "signature": ""}`` is returned.  Callers using the
    sentinel must check for an empty ``signature`` before broadcasting.

    ``timestamp`` must be an integer.  A whole-valued float is signed as
    the equal integer; a fractional, NaN or infinite float raises
    :class:`SigningError`.  Any other non-integer value counts as missing
    and is replaced.
    """
    if not validate_private_key(private_key):
        if legacy_sentinel:
            logger.warning("Refusing to sign with a malformed private key")
            return {"public_key": "", "signature": ""}
        raise InvalidKeyError("Invalid private key: expected 64 hex characters")

    pub = public_key(private_key)
    payload = dict(item)
    if "timestamp" in payload:
        payload["timestamp"] = _coerce_timestamp(payload["timestamp"])
    payload["from"] = address(pub)
    if not _is_timestamp(payload.get("timestamp")):
        skew = TIMESTAMP_SKEW_US if payload_key == DEFAULT_PAYLOAD_KEY else 0
        payload["timestamp"] = utime() + skew

    envelope: dict[str, Any] = {"public_key": "", "signature": ""}
    envelope[payload_key] = payload
    envelope["public_key"] = pub
    envelope["signature"] = sign(tx_hash(payload), private_key)
    logger.debug("Signed %s from %s at %d", payload.get("type", payload_key),
                 payload["from"], payload["timestamp"])
    return envelope


def verify_signed_data(envelope: dict, payload_key: str = DEFAULT_PAYLOAD_KEY) -> bool:
    """
    Check an envelope's signature and that ``from`` matches its public key.
    """
    payload = envelope.get(payload_key)
    pub = envelope.get("public_key") or ""
    sig = envelope.get("signature") or ""
    if not isinstance(payload, dict) or not pub or not sig:
        return False
    if not _is_timestamp(payload.get("timestamp")):
        return False
    if payload.get("from") != address(pub):
        return False
    return verify(tx_hash(payload), sig, pub)


def to_request_json(envelope: dict) -> str:
    """Compact JSON body for the broadcast endpoint."""
    return js_stringify(envelope)


# ===================================================================
#  Request builders
# ===================================================================

def build_send_request_data(
    private_key: str,
    to: str,
    amount: str,
    timestamp: int | None,
    legacy_sentinel: bool = False,
) -> str:
    """Signed ``Send`` of *amount* base units to *to*, as a JSON string."""
    data = {"type": TX_TYPE_SEND, "to": to, "amount": amount, "timestamp": timestamp}
    return to_request_json(signed_data(data, private_key, legacy_sentinel=legacy_sentinel))


def build_transfer_token_request_data(
    private_key: str,
    to: str,
    amount: str,
    token_address: str,
    timestamp: int | None,
    legacy_sentinel: bool = False,
) -> str:
    """Signed token ``Transfer``, as a JSON string."""
    data = {
        "type": TX_TYPE_TRANSFER,
        "to": to,
        "amount": amount,
        "token_address": token_address,
        "timestamp": timestamp,
    }
    return to_request_json(signed_data(data, private_key, legacy_sentinel=legacy_sentinel))


# ===================================================================
#  Explorer records
# ===================================================================

def _unknown_record() -> dict:
    return {"type": "Unknown", "to": "", "amount": "0", "from": "", "timestamp": 0}


def parse_transaction_data(raw: str) -> dict:
    """
    Decode the ``data`` field of an explorer transaction.

    ``amount`` is converted from base units to a 6-decimal display string.
    Undecodable input gives an ``Unknown`` placeholder record.
    """
    try:
        parsed = json.loads(raw)
        if not isinstance(parsed, dict):
            raise ValueError("transaction data is not an object")
        parsed["amount"] = from_base_units(Decimal(str(parsed.get("amount", 0))))
    except (TypeError, ValueError, ArithmeticError) as exc:
        logger.warning("Failed to parse transaction data: %s", exc)
        return _unknown_record()
    return parsed


def parse_transactions(raw_transactions: list[dict]) -> list[dict]:
    """Attach ``parsed_data`` to each raw explorer record."""
    out = []
    for raw in raw_transactions:
        record = {k: v for k, v in raw.items() if k != "data"}
        record["parsed_data"] = parse_transaction_data(raw.get("data", ""))
        out.append(record)
    return out
