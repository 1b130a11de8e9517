from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount: Decimal
    total: Decimal

    @property
    def total_cents(self) -> int:
        return to_minor(self.total)


def to_minor(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


def compute_totals(items: Iterable, coupon=None) -> Totals:
    """Authoritative charge amount for a cart.

    Prices arrive as floats from JSON; they are read through ``str`` so that
    0.1 stays 0.1. The coupon percentage is applied to the subtotal and the
    result rounded half-up to cents.
    """
    subtotal = sum(
        (Decimal(str(item.price)) * item.quantity for item in items),
        Decimal("0"),
    ).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    discount = Decimal("0.00")
    percentage: Optional[float] = coupon.discount_percentage if coupon else None
    if percentage:
        discount = (subtotal * Decimal(str(percentage)) / 100).quantize(
            TWO_PLACES, rounding=ROUND_HALF_UP
        )
    return Totals(subtotal=subtotal, discount=discount, total=subtotal - discount)
