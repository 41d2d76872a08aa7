"""Money helpers.

Storage unit: rupees as ``Numeric(12, 2)`` columns, handled as ``Decimal`` in code.
Gateway unit: paise (smallest INR unit, 100 paise = 1 rupee), integer.

Never use floats for amounts: repeated cart recomputation must not drift.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

PAISE_PER_RUPEE: int = 100
CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number | None) -> Decimal:
    """Coerce DB/JSON numerics to Decimal (None → 0). Floats go through str()."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_money(value: Number | None) -> Decimal:
    """Round to 2 dp, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def rupees_to_paise(amount: Number) -> int:
    """Convert rupees to paise (round half-up). ₹1 = 100 paise."""
    return int(quantize_money(amount) * PAISE_PER_RUPEE)


def paise_to_rupees(paise: int) -> Decimal:
    return quantize_money(Decimal(paise) / PAISE_PER_RUPEE)
