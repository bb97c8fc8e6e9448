"""
Module: dues_kernel.db.types
Responsibility: the money column type and the rounding helpers every model,
    engine and processor request share.
Architecture position: Kernel > DB.  May be imported by modules/, engines/ and
    services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere.  All monetary amounts use Decimal.
    - round_money() is the ONLY sanctioned rounding function for amounts that
      leave the engine (stored balances, processor requests, responses).
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric

# Stored with headroom; amounts are rounded to cents before they are written.
Money = Annotated[Decimal, Numeric(38, 9)]

ZERO = Decimal("0.00")
_CENTS = Decimal("0.01")


def round_money(value: Decimal, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round to whole cents, half-up unless told otherwise."""
    return Decimal(value).quantize(_CENTS, rounding=rounding)


def floor_money(value: Decimal) -> Decimal:
    """Truncate a non-negative amount to whole cents."""
    return round_money(value, rounding=ROUND_DOWN)


def to_minor_units(value: Decimal) -> int:
    """
    Convert a dollar amount into integer cents.

    Example:
        to_minor_units(Decimal("103.30")) -> 10330
    """
    return int(round_money(value) * 100)
