from datetime import timedelta

import pytest

from database import utcnow
from models.cart import Cart
from models.coupon import Coupon


@pytest.fixture
def coupon(db):
    c = Coupon(code="SAVE10", discount=10, discount_type="percentage", is_active=True)
    db.add(c)
    db.commit()
    return c


def test_cart_requires_token(client):
    r = client.get("/cart")
    assert r.status_code == 401
    assert r.json()["detail"] == "Access denied. No token provided."


def test_get_creates_empty_cart(client, user, auth_headers):
    r = client.get("/cart", headers=auth_headers(user))
    assert r.status_code == 200
    body = r.json()
    assert body["items"] == []
    assert body["grand_total"] == 0


def test_add_uses_catalog_price_and_merges_lines(client, user, auth_headers, make_product):
    product = make_product(price=30.0, discount_price=24.0, stock=10)
    headers = auth_headers(user)

    client.post("/cart", json={"product_id": product.id, "quantity": 1}, headers=headers)
    r = client.post("/cart", json={"product_id": product.id, "quantity": 2, "price": 0.01}, headers=headers)

    assert r.status_code == 200
    body = r.json()
    assert len(body["items"]) == 1
    assert body["items"][0]["quantity"] == 3
    assert body["items"][0]["price"] == 30.0
    assert body["item_count"] == 3
    assert body["total"] == 90
    assert body["discount_total"] == 72


def test_add_unknown_product(client, user, auth_headers):
    r = client.post("/cart", json={"product_id": 999, "quantity": 1}, headers=auth_headers(user))
    assert r.status_code == 404


def test_add_more_than_stock(client, user, auth_headers, make_product):
    product = make_product(title="Kettlebell", stock=2)
    headers = auth_headers(user)
    client.post("/cart", json={"product_id": product.id, "quantity": 2}, headers=headers)

    r = client.post("/cart", json={"product_id": product.id, "quantity": 1}, headers=headers)

    assert r.status_code == 400
    assert r.json()["detail"] == "Insufficient stock for Kettlebell. Available: 2"


def test_zero_quantity_is_rejected(client, user, auth_headers, make_product):
    product = make_product()
    r = client.post("/cart", json={"product_id": product.id, "quantity": 0}, headers=auth_headers(user))
    assert r.status_code == 422
    assert "quantity" in r.json()["errors"]


def test_update_and_remove_line(client, user, auth_headers, make_product):
    a = make_product(price=10.0)
    b = make_product(price=5.0)
    headers = auth_headers(user)
    client.post("/cart", json={"product_id": a.id, "quantity": 1}, headers=headers)
    r = client.post("/cart", json={"product_id": b.id, "quantity": 1}, headers=headers)
    item_a, item_b = r.json()["items"]

    r = client.put(f"/cart/items/{item_a['id']}", json={"quantity": 4}, headers=headers)
    assert r.json()["grand_total"] == 45

    r = client.delete(f"/cart/items/{item_b['id']}", headers=headers)
    assert r.json()["grand_total"] == 40
    assert len(r.json()["items"]) == 1


def test_other_users_line_is_not_found(client, user, make_user, auth_headers, make_product):
    product = make_product()
    r = client.post("/cart", json={"product_id": product.id, "quantity": 1}, headers=auth_headers(user))
    item_id = r.json()["items"][0]["id"]

    other = make_user(email="other@example.com")
    r = client.delete(f"/cart/items/{item_id}", headers=auth_headers(other))
    assert r.status_code == 404


def test_coupon_apply_and_remove(client, user, auth_headers, make_product, coupon):
    product = make_product(price=50.0)
    headers = auth_headers(user)
    client.post("/cart", json={"product_id": product.id, "quantity": 2}, headers=headers)

    r = client.post("/cart/coupon", json={"code": " save10 "}, headers=headers)
    assert r.status_code == 200
    assert r.json()["coupon"]["code"] == "SAVE10"
    assert r.json()["grand_total"] == 90

    r = client.delete("/cart/coupon", headers=headers)
    assert r.json()["coupon"] is None
    assert r.json()["grand_total"] == 100


def test_coupon_snapshot_survives_catalog_change(client, db, user, auth_headers, make_product, coupon):
    product = make_product(price=50.0)
    headers = auth_headers(user)
    client.post("/cart", json={"product_id": product.id, "quantity": 1}, headers=headers)
    client.post("/cart/coupon", json={"code": "SAVE10"}, headers=headers)

    coupon.discount = 50
    db.commit()

    r = client.get("/cart", headers=headers)
    assert r.json()["coupon"]["discount"] == 10
    assert r.json()["grand_total"] == 45


def test_unknown_and_expired_coupons(client, db, user, auth_headers):
    headers = auth_headers(user)
    assert client.post("/cart/coupon", json={"code": "NOPE"}, headers=headers).status_code == 404

    db.add(Coupon(code="OLD", discount=5, discount_type="fixed", expires_at=utcnow() - timedelta(days=1)))
    db.commit()
    r = client.post("/cart/coupon", json={"code": "OLD"}, headers=headers)
    assert r.status_code == 400


def test_clear_cart(client, db, user, auth_headers, make_product, coupon):
    product = make_product()
    headers = auth_headers(user)
    client.post("/cart", json={"product_id": product.id, "quantity": 1}, headers=headers)
    client.post("/cart/coupon", json={"code": "SAVE10"}, headers=headers)

    r = client.delete("/cart", headers=headers)

    assert r.status_code == 200
    assert r.json()["items"] == []
    assert r.json()["coupon"] is None
    db.expire_all()
    cart = db.query(Cart).filter(Cart.user_id == user.id).one()
    assert cart.grand_total == 0
