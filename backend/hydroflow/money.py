from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """
    Coerce a stored or aggregated value into a 2-place Decimal.

    - None -> 0.00 (SUM over zero rows)
    - int / str / Decimal -> quantized Decimal
    - float is refused; money never passes through binary floating point
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise TypeError("boolean is not a monetary amount")
    if isinstance(value, float):
        raise TypeError("float is not allowed for monetary amounts")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"invalid monetary amount: {value!r}")
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Optional[Decimal]) -> Optional[str]:
    """Serialize money for JSON responses ("12.50")."""
    if value is None:
        return None
    return str(to_money(value))
