"""
Module: procurement_kernel.db.types
Responsibility: Annotated column types and the money rounding helper used by
    every model and pricing function.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.

Invariants enforced:
    - No floats for money.  Amounts are Decimal, stored as Numeric(38, 9).
    - round_money() is the only sanctioned rounding function; line totals
      are rounded once, so a requisition total is an exact sum of its lines.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

Money = Annotated[Decimal, Numeric(38, 9)]

Quantity = Annotated[Decimal, Numeric(38, 9)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value: object) -> Decimal:
    """Coerce int/str/Decimal (and driver floats read back from SQLite)."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


def round_money(amount: Decimal, places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """
    Round a monetary amount with ROUND_HALF_UP.

    Args:
        amount: Amount to round.
        places: Decimal places to keep (default: 2).
    """
    quantizer = Decimal(10) ** -places
    return to_decimal(amount).quantize(quantizer, rounding=DEFAULT_ROUNDING)
