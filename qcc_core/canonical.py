"""
Canonical string encoding used for every hash and signature in QCC.

The encoding is *not* a general canonical-JSON form.  It reproduces what
the browser wallet does before hashing:

  1. Objects and arrays are serialised like ``JSON.stringify`` (compact,
     insertion ordered, non-ASCII left as-is).  Scalars go through
     ``String()``.
  2. Every ``/`` becomes ``\\/``.
  3. Every UTF-16 code unit above ``0xFF`` is written as ``\\u`` followed by
     its lowercase hex digits, with no zero padding.

Signer and verifier must use this exact routine; reordering keys or
switching serialisers changes the hash.

Usage:
    from qcc_core.canonical import canonicalize
    canonicalize({"type": "Send", "to": "a/b"})   # '{"type":"Send","to":"a\\/b"}'
"""

from __future__ import annotations

import json
import math
from decimal import Decimal
from typing import Any

# Largest array index in ECMAScript; keys below it are ordered first.
_MAX_ARRAY_INDEX = 2 ** 32 - 1


# ===================================================================
#  JavaScript number / key formatting
# ===================================================================

def js_number(value: float | int) -> str:
    """
    Format a number the way JavaScript's ``Number#toString`` does.

    >>> js_number(1.0)
    '1'
    >>> js_number(1e21)
    '1e+21'
    >>> js_number(5.5e-7)
    '5.5e-7'
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    # repr() yields the shortest round-tripping digits, same as V8
    _, digit_tuple, exponent = Decimal(repr(abs(value))).as_tuple()
    digits = "".join(str(d) for d in digit_tuple).rstrip("0") or "0"
    exponent += len(digit_tuple) - len(digits)
    k = len(digits)
    n = exponent + k

    if k <= n <= 21:
        body = digits + "0" * (n - k)
    elif 0 < n <= 21:
        body = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        body = "0." + "0" * (-n) + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        body = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return sign + body


def _is_array_index(key: str) -> bool:
    if not key.isascii() or not key.isdigit():
        return False
    if len(key) > 1 and key.startswith("0"):
        return False
    return int(key) < _MAX_ARRAY_INDEX


def _key_string(key: Any) -> str:
    if isinstance(key, str):
        return key
    if key is None:
        return "null"
    if isinstance(key, (bool, int, float)):
        return js_number(key)
    raise TypeError(f"keys must be str, int, float, bool or None, not {type(key).__name__}")


def _ordered_items(obj: dict) -> list[tuple[str, Any]]:
    """Integer-like keys ascending, then string keys in insertion order."""
    items = [(_key_string(k), v) for k, v in obj.items()]
    index_items = sorted(
        (item for item in items if _is_array_index(item[0])),
        key=lambda item: int(item[0]),
    )
    named_items = [item for item in items if not _is_array_index(item[0])]
    return index_items + named_items


# ===================================================================
#  JSON.stringify equivalent
# ===================================================================

def js_stringify(value: Any) -> str:
    """Serialise *value* exactly as ``JSON.stringify`` would."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return "null"
        return js_number(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, dict):
        return "{" + ",".join(
            json.dumps(k, ensure_ascii=False) + ":" + js_stringify(v)
            for k, v in _ordered_items(value)
        ) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(js_stringify(v) for v in value) + "]"
    raise TypeError(f"Object of type {type(value).__name__} is not serialisable")


def js_string(value: Any) -> str:
    """``String(value)`` for the scalar types the wallet hashes."""
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, (bool, int, float)):
        return js_number(value)
    raise TypeError(f"Cannot convert {type(value).__name__} to a string")


# ===================================================================
#  Escaping
# ===================================================================

def string_to_unicode(text: str) -> str:
    """Escape every UTF-16 code unit above 0xFF as ``\\u<hex>``."""
    if not text:
        return ""
    raw = text.encode("utf-16-be", "surrogatepass")
    out = []
    for i in range(0, len(raw), 2):
        unit = (raw[i] << 8) | raw[i + 1]
        out.append(f"\\u{unit:x}" if unit > 0xFF else chr(unit))
    return "".join(out)


def canonicalize(value: Any) -> str:
    """Return the canonical string that gets hashed and signed."""
    if isinstance(value, (dict, list, tuple)):
        s = js_stringify(value)
    else:
        s = js_string(value)
    return string_to_unicode(s.replace("/", "\\/"))
