"""
Precision constants and amount helpers for QCC.

QCC tokens carry 18 decimal places on chain:

    1 QTC = 10**18 base units

Amounts typed by users are decimal strings; the chain wants the base-unit
integer as a plain string (no exponent, no decimal point).  Conversion is
done with exact ``Decimal``/``int`` arithmetic: the scaled value is
truncated toward zero, never rounded.

:func:`unscientific_notation` is the older string-splicing routine the
wallet used on ``decimal.js`` output.  It is kept for wire compatibility
and cross-checking; new code should call :func:`to_base_units`.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Union

from qcc_core.canonical import js_number
from qcc_core.errors import InvalidAmountError

# Number of decimal places of the on-chain token.
BASE_UNIT_DECIMALS: int = 18

# Base units per display token.
BASE_UNITS_PER_TOKEN: int = 10 ** BASE_UNIT_DECIMALS

# Decimal places shown for balances and explorer amounts.
DISPLAY_DECIMALS: int = 6

# decimal.js switches to exponent notation outside [1e-7, 1e21).
_EXP_NEG = -7
_EXP_POS = 21

AmountLike = Union[str, int, float, Decimal]

_INT_PREFIX_RE = re.compile(r"\s*([+-]?\d+)")


def _parse_decimal(value: AmountLike) -> Decimal:
    """Parse *value* as a finite, non-negative Decimal."""
    if isinstance(value, bool):
        raise InvalidAmountError("Amount must be numeric, not bool")
    try:
        if isinstance(value, Decimal):
            d = value
        elif isinstance(value, float):
            d = Decimal(repr(value))
        elif isinstance(value, (int, str)):
            d = Decimal(str(value).strip())
        else:
            raise InvalidAmountError(f"Unsupported amount type {type(value).__name__}")
    except InvalidOperation:
        raise InvalidAmountError(f"Amount is not a number: {value!r}") from None
    if not d.is_finite():
        raise InvalidAmountError("Amount must be finite")
    if d.is_signed() and d != 0:
        raise InvalidAmountError("Amount must not be negative")
    return d


def _stripped_digits(d: Decimal) -> tuple[str, int]:
    """Significant digits without trailing zeros, and their exponent."""
    _, digit_tuple, exponent = d.as_tuple()
    digits = "".join(str(x) for x in digit_tuple).lstrip("0")
    stripped = digits.rstrip("0")
    return stripped, exponent + len(digits) - len(stripped)


def js_decimal_string(d: Decimal) -> str:
    """
    Format *d* like ``decimal.js`` ``toString()``.

    >>> js_decimal_string(Decimal("1000") * 10 ** 18)
    '1e+21'
    >>> js_decimal_string(Decimal("0.00000055"))
    '5.5e-7'
    """
    sign = "-" if d.is_signed() else ""
    digits, exponent = _stripped_digits(d)
    if not digits:
        return "0"
    e = exponent + len(digits) - 1
    if e >= _EXP_POS or e <= _EXP_NEG:
        mantissa = digits if len(digits) == 1 else digits[0] + "." + digits[1:]
        return f"{sign}{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    if exponent >= 0:
        return sign + digits + "0" * exponent
    point = len(digits) + exponent
    if point > 0:
        return sign + digits[:point] + "." + digits[point:]
    return sign + "0." + "0" * (-point) + digits


def _js_parse_int(text: str) -> int | None:
    m = _INT_PREFIX_RE.match(text)
    return int(m.group(1)) if m else None


def _amount_text(value: AmountLike) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, Decimal):
        return js_decimal_string(value)
    return js_number(value)


def unscientific_notation(value: AmountLike) -> str:
    """
    Expand an exponent-notation amount into plain digits.

    >>> unscientific_notation("1e+21")
    '1000000000000000000000'
    >>> unscientific_notation("5.5e-7")
    '0.00000055'
    >>> unscientific_notation("123")
    '123'
    """
    x = _amount_text(value)
    magnitude = _parse_decimal(x)
    if "e" not in x:
        return x

    if magnitude < 1:
        mantissa, _, tail = x.partition("e-")
        e = _js_parse_int(tail)
        if e:
            x = "0." + "0" * (e - 1) + mantissa.replace(".", "", 1)
        return x

    parts = x.split("+")
    e = _js_parse_int(parts[1]) if len(parts) > 1 else None
    if e is None:
        raise InvalidAmountError(f"Cannot read exponent of {x!r}")
    mantissa = x.split("e")[0].replace(".", "", 1)
    pad = e - len(mantissa) + 1
    if pad < -1:
        raise InvalidAmountError(f"Exponent too small for mantissa in {x!r}")
    return mantissa + "0" * max(pad, 0)


def to_base_units(amount: AmountLike, decimals: int = BASE_UNIT_DECIMALS) -> str:
    """
    Scale a display amount by ``10**decimals`` and truncate to an integer.

    >>> to_base_units("1")
    '1000000000000000000'
    >>> to_base_units("0.0000000000000000015")
    '1'
    """
    d = _parse_decimal(amount)
    digits, exponent = _stripped_digits(d)
    if not digits:
        return "0"
    shift = exponent + decimals
    n = int(digits)
    if shift >= 0:
        return str(n * 10 ** shift)
    return str(n // 10 ** (-shift))


def from_base_units(raw: AmountLike, places: int = DISPLAY_DECIMALS,
                    decimals: int = BASE_UNIT_DECIMALS) -> str:
    """Render a base-unit amount in display units with *places* decimals."""
    d = _parse_decimal(raw)
    digits, _ = _stripped_digits(d)
    with localcontext() as ctx:
        ctx.prec = max(len(digits) + decimals + places + 2, 28)
        value = d.scaleb(-decimals)
        quantum = Decimal(1).scaleb(-places)
        return format(value.quantize(quantum, rounding=ROUND_HALF_UP), "f")


def format_amount(amount: AmountLike, decimal_places: int = 8) -> str:
    """
    Truncate (not round) *amount* to *decimal_places* for display.

    >>> format_amount("123.4567891234")
    '123.45678912'
    >>> format_amount("5.10")
    '5.1'
    """
    text = _amount_text(amount)
    m = re.match(rf"^-?\d+(?:\.\d{{0,{decimal_places}}})?", text)
    if m is None:
        return "0"
    return js_number(float(m.group(0)))
