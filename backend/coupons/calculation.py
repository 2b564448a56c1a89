# coupons/calculation.py
# Discount arithmetic in Decimal; results rounded up to whole currency units.

from decimal import ROUND_CEILING, Decimal
from typing import Optional, Union

from pydantic import BaseModel

from schemas import DiscountType

Number = Union[int, float, Decimal]


class DiscountCalculation(BaseModel):
    original_price: float
    discount_amount: float
    final_price: float
    discount_type: DiscountType
    discount_value: float


def _ceil(value: Decimal) -> float:
    return float(value.quantize(Decimal("1"), rounding=ROUND_CEILING))


def calculate_discount(
    original_price: Number,
    discount_type: DiscountType,
    discount_value: Number,
    max_discount_amount: Optional[Number] = None,
) -> DiscountCalculation:
    price = Decimal(str(original_price))
    value = Decimal(str(discount_value))

    if discount_type == DiscountType.PERCENTAGE:
        discount = price * value / Decimal(100)
    elif discount_type == DiscountType.FIXED:
        discount = value
    else:
        raise ValueError(f"Invalid discount type: {discount_type}")

    if max_discount_amount:
        discount = min(discount, Decimal(str(max_discount_amount)))
    discount = max(min(discount, price), Decimal(0))
    final = max(price - discount, Decimal(0))

    return DiscountCalculation(
        original_price=float(original_price),
        discount_amount=_ceil(discount),
        final_price=_ceil(final),
        discount_type=discount_type,
        discount_value=float(discount_value),
    )
