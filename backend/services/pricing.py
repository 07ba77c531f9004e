# backend/services/pricing.py
"""Cart and order money arithmetic.

Every amount the shop shows or charges (cart totals, order totals, the
amount sent to the payment gateway) comes out of ``compute_totals`` so the
rules live in one place:

* ``total``          sum of list price x quantity
* ``discount_total`` sum of effective price x quantity, where the effective
                     price is the discount price when one is set (> 0)
* ``grand_total``    ``discount_total`` minus the coupon discount, never
                     below zero. Percentage coupons take a share of
                     ``discount_total``; fixed coupons are capped at it.
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from models.coupon import DiscountType


@dataclass(frozen=True)
class PricedLine:
    quantity: int
    price: float
    discount_price: Optional[float] = None


@dataclass(frozen=True)
class CouponTerms:
    code: str
    discount: float
    discount_type: str


@dataclass(frozen=True)
class Totals:
    total: float
    discount_total: float
    grand_total: float
    coupon_discount: float = 0.0


def _money(value: float) -> float:
    return round(value, 2)


def effective_price(price: float, discount_price: Optional[float]) -> float:
    if discount_price is not None and discount_price > 0:
        return discount_price
    return price


def coupon_discount(discount_total: float, coupon: Optional[CouponTerms]) -> float:
    if coupon is None or not coupon.code:
        return 0.0
    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        return discount_total * (coupon.discount / 100)
    return min(coupon.discount, discount_total)


def compute_totals(lines: Iterable[PricedLine], coupon: Optional[CouponTerms] = None) -> Totals:
    total = 0.0
    discount_total = 0.0
    for line in lines:
        total += line.price * line.quantity
        discount_total += effective_price(line.price, line.discount_price) * line.quantity

    reduction = coupon_discount(discount_total, coupon)
    grand_total = max(0.0, discount_total - reduction)
    return Totals(
        total=_money(total),
        discount_total=_money(discount_total),
        grand_total=_money(grand_total),
        coupon_discount=_money(reduction),
    )


def cart_coupon(cart) -> Optional[CouponTerms]:
    if not cart.coupon_code:
        return None
    return CouponTerms(
        code=cart.coupon_code,
        discount=cart.coupon_discount or 0.0,
        discount_type=cart.coupon_type or DiscountType.PERCENTAGE.value,
    )


def apply_cart_totals(cart) -> Totals:
    """Recomputes the derived money fields of a cart in place."""
    lines = [PricedLine(it.quantity, it.price, it.discount_price) for it in cart.items]
    totals = compute_totals(lines, cart_coupon(cart))
    cart.total = totals.total
    cart.discount_total = totals.discount_total
    cart.grand_total = totals.grand_total
    return totals
