import pytest

from services.pricing import (
    PricedLine, CouponTerms, compute_totals, effective_price, coupon_discount, apply_cart_totals
)
from models.cart import Cart, CartItem


def test_effective_price_prefers_positive_discount():
    assert effective_price(30.0, 24.0) == 24.0
    assert effective_price(30.0, 0) == 30.0
    assert effective_price(30.0, None) == 30.0


def test_empty_cart_is_all_zero():
    totals = compute_totals([])
    assert (totals.total, totals.discount_total, totals.grand_total) == (0, 0, 0)


def test_fixed_coupon_without_discounts():
    totals = compute_totals([PricedLine(2, 20.0)], CouponTerms("FIVE", 5, "fixed"))
    assert totals.total == 40
    assert totals.discount_total == 40
    assert totals.grand_total == 35


def test_percentage_coupon_on_discounted_line():
    totals = compute_totals([PricedLine(3, 30.0, 24.0)], CouponTerms("TEN", 10, "percentage"))
    assert totals.total == 90
    assert totals.discount_total == 72
    assert totals.grand_total == pytest.approx(64.8)
    assert totals.coupon_discount == pytest.approx(7.2)


def test_zero_percent_coupon_changes_nothing():
    totals = compute_totals([PricedLine(1, 19.99), PricedLine(2, 5.0, 4.5)], CouponTerms("ZERO", 0, "percentage"))
    assert totals.grand_total == totals.discount_total


def test_fixed_coupon_larger_than_cart_floors_at_zero():
    totals = compute_totals([PricedLine(1, 10.0)], CouponTerms("BIG", 50, "fixed"))
    assert totals.grand_total == 0
    assert coupon_discount(10.0, CouponTerms("BIG", 50, "fixed")) == 10.0


def test_discount_above_list_price_is_not_rejected():
    totals = compute_totals([PricedLine(1, 10.0, 12.0)])
    assert totals.total == 10
    assert totals.discount_total == 12


@pytest.mark.parametrize("lines,coupon", [
    ([PricedLine(1, 9.99, 7.49), PricedLine(4, 3.25)], CouponTerms("P", 15, "percentage")),
    ([PricedLine(7, 1.1, 1.0)], CouponTerms("F", 2.5, "fixed")),
    ([PricedLine(2, 100.0, 80.0)], None),
])
def test_totals_are_ordered(lines, coupon):
    totals = compute_totals(lines, coupon)
    assert 0 <= totals.grand_total <= totals.discount_total <= totals.total


def test_apply_cart_totals_uses_embedded_coupon():
    cart = Cart(user_id=1, coupon_code="TEN", coupon_discount=10, coupon_type="percentage")
    cart.items.append(CartItem(product_id=1, quantity=3, price=30.0, discount_price=24.0))

    apply_cart_totals(cart)

    assert cart.total == 90
    assert cart.discount_total == 72
    assert cart.grand_total == pytest.approx(64.8)
