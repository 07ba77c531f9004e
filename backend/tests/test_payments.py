import hashlib
import hmac
import time

from conftest import sign_webhook, WEBHOOK_SECRET
from models.log import Log
from models.order import Order
from models.product import Product
from utils.stripe_client import verify_stripe_signature, PaymentIntent, to_minor_units


def _card_order(client, headers, product, shipping, quantity=1):
    r = client.post(
        "/orders",
        json={
            "items": [{"product_id": product.id, "quantity": quantity}],
            "shipping_address": shipping,
            "payment_method": "STRIPE",
        },
        headers=headers,
    )
    assert r.status_code == 201
    return r.json()["order"]


def _event(event_type, intent_id, order_number=None, receipt_email="payer@example.com"):
    metadata = {"orderId": order_number} if order_number else {}
    return {
        "id": "evt_1",
        "type": event_type,
        "data": {"object": {"id": intent_id, "receipt_email": receipt_email, "metadata": metadata}},
    }


def _deliver(client, payload, secret=WEBHOOK_SECRET, timestamp=None):
    body, header = sign_webhook(payload, secret, timestamp)
    return client.post(
        "/webhook", content=body,
        headers={"Stripe-Signature": header, "Content-Type": "application/json"},
    )


def _reload(db, order_id):
    db.expire_all()
    return db.query(Order).filter(Order.id == order_id).one()


# ============================================================================
# Signature handling
# ============================================================================


def test_signature_roundtrip_and_tolerance():
    body, header = sign_webhook({"type": "ping"}, timestamp=1_000_000)
    assert verify_stripe_signature(body, header, WEBHOOK_SECRET, tolerance=300, now=1_000_100)
    assert not verify_stripe_signature(body, header, WEBHOOK_SECRET, tolerance=300, now=1_000_400)
    assert not verify_stripe_signature(body, header, "whsec_other", now=1_000_000)
    assert not verify_stripe_signature(body + b" ", header, WEBHOOK_SECRET, now=1_000_000)
    assert not verify_stripe_signature(body, "garbage", WEBHOOK_SECRET)
    assert not verify_stripe_signature(body, header, "")


def test_intent_from_api_and_minor_units():
    intent = PaymentIntent.from_api({"id": "pi_1", "status": "succeeded", "metadata": None})
    assert intent.succeeded
    assert intent.metadata == {}
    assert to_minor_units(64.8) == 6480


def test_webhook_without_signature_is_rejected(client, db, user, auth_headers, make_product, shipping):
    order = _card_order(client, auth_headers(user), make_product(), shipping)
    r = client.post("/webhook", json=_event("payment_intent.succeeded", order["payment_details"]["transaction_id"]))

    assert r.status_code == 400
    assert _reload(db, order["id"]).payment_status == "pending"


def test_webhook_with_bad_signature_changes_nothing(client, db, user, auth_headers, make_product, shipping):
    order = _card_order(client, auth_headers(user), make_product(), shipping)
    payload = _event("payment_intent.succeeded", order["payment_details"]["transaction_id"], order["order_number"])

    r = _deliver(client, payload, secret="whsec_forged")

    assert r.status_code == 400
    assert r.json()["detail"] == "Webhook signature verification failed"
    assert _reload(db, order["id"]).payment_status == "pending"


def test_webhook_with_stale_timestamp(client, db, user, auth_headers, make_product, shipping):
    order = _card_order(client, auth_headers(user), make_product(), shipping)
    payload = _event("payment_intent.succeeded", order["payment_details"]["transaction_id"], order["order_number"])

    r = _deliver(client, payload, timestamp=int(time.time()) - 3600)

    assert r.status_code == 400
    assert _reload(db, order["id"]).payment_status == "pending"


# ============================================================================
# Event processing
# ============================================================================


def test_succeeded_event_marks_order_paid(client, db, user, auth_headers, make_product, shipping):
    product = make_product(stock=5)
    order = _card_order(client, auth_headers(user), product, shipping, quantity=2)
    intent_id = order["payment_details"]["transaction_id"]

    r = _deliver(client, _event("payment_intent.succeeded", intent_id, order["order_number"]))

    assert r.status_code == 200
    assert r.json() == {"received": True, "status": "processed"}
    stored = _reload(db, order["id"])
    assert stored.payment_status == "paid"
    assert stored.status == "processing"
    assert stored.payer_email == "payer@example.com"
    assert stored.paid_at is not None
    assert db.query(Product).filter(Product.id == product.id).one().stock == 3


def test_duplicate_delivery_is_a_no_op(client, db, user, auth_headers, make_product, shipping):
    product = make_product(stock=5)
    order = _card_order(client, auth_headers(user), product, shipping, quantity=2)
    payload = _event("payment_intent.succeeded", order["payment_details"]["transaction_id"], order["order_number"])

    _deliver(client, payload)
    history = len(_reload(db, order["id"]).tracking_history)
    r = _deliver(client, payload)

    assert r.json()["status"] == "duplicate"
    stored = _reload(db, order["id"])
    assert len(stored.tracking_history) == history
    assert db.query(Product).filter(Product.id == product.id).one().stock == 3
    skipped = db.query(Log).filter(Log.action == "PAYMENT_CONFIRMED", Log.status == "SKIPPED").count()
    assert skipped == 1


def test_order_found_by_intent_id_without_metadata(client, db, user, auth_headers, make_product, shipping):
    order = _card_order(client, auth_headers(user), make_product(), shipping)

    r = _deliver(client, _event("payment_intent.succeeded", order["payment_details"]["transaction_id"]))

    assert r.json()["status"] == "processed"
    assert _reload(db, order["id"]).payment_status == "paid"


def test_failed_event(client, db, user, auth_headers, make_product, shipping):
    product = make_product(stock=5)
    order = _card_order(client, auth_headers(user), product, shipping)
    payload = _event("payment_intent.payment_failed", order["payment_details"]["transaction_id"], order["order_number"])

    r = _deliver(client, payload)

    assert r.json()["status"] == "processed"
    stored = _reload(db, order["id"])
    assert stored.payment_status == "failed"
    assert stored.status == "pending"
    assert stored.tracking_history[-1].location == "Payment failed"
    assert db.query(Product).filter(Product.id == product.id).one().stock == 4


def test_failed_event_after_payment_is_ignored(client, db, user, auth_headers, make_product, shipping):
    order = _card_order(client, auth_headers(user), make_product(), shipping)
    intent_id = order["payment_details"]["transaction_id"]
    _deliver(client, _event("payment_intent.succeeded", intent_id, order["order_number"]))

    r = _deliver(client, _event("payment_intent.payment_failed", intent_id, order["order_number"]))

    assert r.json()["status"] == "duplicate"
    assert _reload(db, order["id"]).payment_status == "paid"


def test_unknown_order_and_other_events(client):
    r = _deliver(client, _event("payment_intent.succeeded", "pi_missing", "ORD-0000000000000-000000000000"))
    assert r.status_code == 200
    assert r.json() == {"received": True, "status": "ignored"}

    r = _deliver(client, {"id": "evt_2", "type": "charge.refunded", "data": {"object": {"id": "ch_1"}}})
    assert r.json() == {"received": True}


def test_malformed_payload(client):
    body = b"not json"
    ts = int(time.time())
    sig = hmac.new(WEBHOOK_SECRET.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()

    r = client.post("/webhook", content=body, headers={"Stripe-Signature": f"t={ts},v1={sig}"})

    assert r.status_code == 400
    assert r.json()["detail"] == "Malformed webhook payload"


# ============================================================================
# Client-driven confirmation
# ============================================================================


def test_confirm_payment_route(client, db, user, make_user, auth_headers, make_product, shipping, gateway):
    order = _card_order(client, auth_headers(user), make_product(), shipping)
    intent_id = order["payment_details"]["transaction_id"]
    body = {"transaction_id": intent_id, "order_id": order["id"]}

    r = client.post("/payments/confirm", json=body, headers=auth_headers(user))
    assert r.status_code == 402

    other = make_user(email="other@example.com")
    assert client.post("/payments/confirm", json=body, headers=auth_headers(other)).status_code == 403

    gateway.succeed(intent_id)
    r = client.post("/payments/confirm", json=body, headers=auth_headers(user))
    assert r.status_code == 200
    assert r.json()["payment_status"] == "paid"
    assert r.json()["payment_details"]["payer_email"] == "payer@example.com"

    r = client.post("/payments/confirm", json=body, headers=auth_headers(user))
    assert r.status_code == 200
    assert len(r.json()["tracking_history"]) == 2


def test_confirm_payment_wrong_transaction(client, user, auth_headers, make_product, shipping):
    order = _card_order(client, auth_headers(user), make_product(), shipping)

    r = client.post(
        "/payments/confirm",
        json={"transaction_id": "pi_someone_else", "order_id": order["id"]},
        headers=auth_headers(user),
    )

    assert r.status_code == 400
    assert r.json()["errors"] == {"transaction_id": "mismatch"}
