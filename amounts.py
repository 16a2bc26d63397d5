"""Currency helpers.

Amounts are persisted as integer cents, so every stored value is already
rounded to two decimals. Conversion in both directions happens here and only
here; callers never see fractional cents.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

AmountInput = Union[Decimal, int, float, str]


def to_cents(value: AmountInput) -> int:
    if isinstance(value, Decimal):
        amount = value
    else:
        clean = str(value).strip().replace(" ", "").replace(",", ".")
        try:
            amount = Decimal(clean)
        except InvalidOperation as exc:
            raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int) -> float:
    return float(Decimal(int(cents)) / Decimal(100))


def percent_of(part: int, whole: int, *, places: int = 2) -> float:
    """Percentage of ``part`` in ``whole``, 0 when ``whole`` is not positive."""
    if whole <= 0:
        return 0.0
    exponent = Decimal(1).scaleb(-places)
    ratio = Decimal(part) * 100 / Decimal(whole)
    return float(ratio.quantize(exponent, rounding=ROUND_HALF_UP))


def whole_percent(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    ratio = Decimal(part) * 100 / Decimal(whole)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def divide_cents(total: int, count: int) -> int:
    if count <= 0:
        return 0
    ratio = Decimal(total) / Decimal(count)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
