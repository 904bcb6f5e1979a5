"""
Line item pricing.

WHY: Pricing is an explicit, pure step run before every item write, so the
arithmetic can be tested without a database and the store never computes
amounts behind our back.

ARITHMETIC:
    base           = quantity * unit_price
    discount       = base * pct / 100  (percentage)  |  flat amount
    line_total     = base - discount   (a discount larger than base is rejected)
    gst_amount     = line_total * gst_rate / 100
    total_amount   = line_total + gst_amount

All monetary outputs are Decimals rounded to 2 places with ROUND_HALF_UP
(ties away from zero, as currency is displayed), never banker's rounding.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from ..errors import ValidationError
from ..models.invoices import DISCOUNT_AMOUNT, DISCOUNT_PERCENTAGE, DISCOUNT_TYPES

CENT = Decimal("0.01")
# Stored scales: InvoiceItem.quantity Numeric(10, 3), money columns Numeric(10, 2).
QUANTITY_PLACES = 3
MONEY_PLACES = 2
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def _fits_scale(value: Decimal, places: int) -> bool:
    try:
        return value == value.quantize(Decimal(1).scaleb(-places))
    except InvalidOperation:
        # more digits than the decimal context can hold
        return False


def to_decimal(value, field: str, places: int | None = None) -> Decimal:
    """
    Coerce int/str/Decimal input to Decimal. Floats go through str() to avoid binary noise.

    With `places`, values that would not survive storage at that scale are
    rejected rather than silently rounded.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if places is not None and not _fits_scale(result, places):
        raise ValidationError(
            f"{field} allows at most {places} decimal places",
            details={field: str(value)},
        )
    return result


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineAmounts:
    base_amount: Decimal
    discount_amount: Decimal
    line_total: Decimal
    gst_amount: Decimal
    total_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "base_amount": str(self.base_amount),
            "discount_amount": str(self.discount_amount),
            "line_total": str(self.line_total),
            "gst_amount": str(self.gst_amount),
            "total_amount": str(self.total_amount),
        }


def compute(quantity, unit_price, discount=0, discount_type: str = DISCOUNT_AMOUNT, gst_rate=0) -> LineAmounts:
    """
    Price one line. Pure: no storage access, no side effects.

    Raises ValidationError for non-positive quantity, a quantity finer than
    3 places or a discount finer than 2, negative price or
    discount, a percentage above 100, a gst_rate outside 0-100, an unknown
    discount_type, or a discount that exceeds the line's base amount.
    """
    quantity = to_decimal(quantity, "quantity", QUANTITY_PLACES)
    unit_price = to_decimal(unit_price, "unit_price")
    discount = to_decimal(discount, "discount", MONEY_PLACES)
    gst_rate = to_decimal(gst_rate, "gst_rate")

    if quantity <= ZERO:
        raise ValidationError("quantity must be greater than zero")
    if unit_price < ZERO:
        raise ValidationError("unit_price cannot be negative")
    if discount < ZERO:
        raise ValidationError("discount cannot be negative")
    if gst_rate < ZERO or gst_rate > HUNDRED:
        raise ValidationError("gst_rate must be between 0 and 100")
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError(f"discount_type must be one of: {', '.join(DISCOUNT_TYPES)}")

    base = quantity * unit_price
    if discount_type == DISCOUNT_PERCENTAGE:
        if discount > HUNDRED:
            raise ValidationError("percentage discount cannot exceed 100")
        discount_amount = base * discount / HUNDRED
    else:
        discount_amount = discount

    if discount_amount > base:
        raise ValidationError(
            "discount exceeds line amount",
            details={"base_amount": str(round_money(base)), "discount_amount": str(round_money(discount_amount))},
        )

    discounted = base - discount_amount
    line_total = round_money(discounted)
    gst_amount = round_money(discounted * gst_rate / HUNDRED)

    return LineAmounts(
        base_amount=round_money(base),
        discount_amount=round_money(discount_amount),
        line_total=line_total,
        gst_amount=gst_amount,
        total_amount=line_total + gst_amount,
    )


def sum_totals(lines: Iterable) -> tuple[Decimal, Decimal, Decimal]:
    """Aggregate (subtotal, total_gst, total_amount) from priced lines."""
    subtotal = ZERO
    total_gst = ZERO
    for line in lines:
        subtotal += Decimal(line.line_total)
        total_gst += Decimal(line.gst_amount)
    subtotal = round_money(subtotal)
    total_gst = round_money(total_gst)
    return subtotal, total_gst, subtotal + total_gst
