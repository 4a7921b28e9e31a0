"""
Raw amount handling.

Ledger amounts are unsigned 128-bit integers of "raw". They arrive from the
node as decimal strings and must never pass through float: 1 nano is 10^30
raw, far beyond the 2^53 a float can hold exactly.
"""

from decimal import Decimal, InvalidOperation, localcontext
from typing import Union

RAW_PER_NANO = 10**30
MAX_RAW = 2**128 - 1


def parse_raw(value: Union[int, str]) -> int:
    """
    Parse a raw amount from the node into an exact integer.

    Examples:
        >>> parse_raw("1000000000000000000000000000000")
        1000000000000000000000000000000
        >>> parse_raw(0)
        0
    """
    # bool is an int subclass; float is rejected outright
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"raw amount must be int or decimal string, got {type(value).__name__}")

    if isinstance(value, str):
        if not value.isdigit():
            raise ValueError(f"raw amount {value!r} is not a non-negative integer")
        value = int(value)

    if value < 0 or value > MAX_RAW:
        raise ValueError(f"raw amount {value} out of range")
    return value


def raw_to_nano(raw: int) -> Decimal:
    """Convert raw to nano exactly, for display."""
    with localcontext() as ctx:
        ctx.prec = 60
        return Decimal(raw) / Decimal(RAW_PER_NANO)


def nano_to_raw(value: Union[str, Decimal]) -> int:
    """
    Convert a nano amount to raw.

    Accepts strings or Decimal only. Fractional raw is an error.
    """
    if not isinstance(value, (str, Decimal)):
        raise ValueError("nano amount must be a string or Decimal")

    try:
        amount = Decimal(value)
    except InvalidOperation as e:
        raise ValueError(f"invalid nano amount {value!r}") from e

    if not amount.is_finite():
        raise ValueError(f"invalid nano amount {value!r}")

    with localcontext() as ctx:
        ctx.prec = 60
        raw = amount * RAW_PER_NANO

    if raw != raw.to_integral_value():
        raise ValueError(f"Nano value {value} results in fractional raw: {raw}")

    return parse_raw(int(raw))
