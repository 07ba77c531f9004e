"""
Two sessions against one file-backed SQLite database, interleaved the way
concurrent requests would be: stock and payment changes made by one session
must hold even when the other acts on rows it loaded earlier.
"""
from datetime import timedelta

import pytest

from database import make_engine, make_session_factory, init_db, utcnow
from models.category import Category, SubCategory
from models.order import Order, OrderStatus, PaymentStatus, PaymentMethod
from models.product import Product
from models.users import User
from services import orders as order_service
from services.orders import OrderLine
from utils.errors import InsufficientStock

TTL = timedelta(minutes=30)


@pytest.fixture
def sessions(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'shop.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def seeded(sessions):
    with sessions() as db:
        category = Category(name="Strength", slug="strength",
                            subcategories=[SubCategory(name="Kettlebells", slug="kettlebells")])
        user = User(name="Shopper", email="shopper@example.com", password_hash="not-a-real-hash", role="customer")
        db.add_all([category, user])
        db.flush()
        product = Product(
            title="Kettlebell", slug="kettlebell", sku="KB-01", description="16 kg",
            price=40.0, discount_price=0, stock=5,
            category_id=category.id, subcategory_id=category.subcategories[0].id,
        )
        db.add(product)
        db.commit()
        return user.id, product.id


def _stock(sessions, product_id):
    with sessions() as db:
        return db.get(Product, product_id).stock


async def _place(sessions, gateway, shipping, user_id, product_id, quantity, method=PaymentMethod.COD, age=None):
    with sessions() as db:
        placed = await order_service.create_order(
            db, gateway, db.get(User, user_id), [OrderLine(product_id, quantity)], shipping, method
        )
        order = placed.order
        if age is not None:
            order.created_at = utcnow() - age
            db.commit()
        return order.id


@pytest.mark.asyncio
async def test_second_session_cannot_oversell(sessions, seeded, gateway, shipping):
    user_id, product_id = seeded
    late = sessions()
    try:
        # Loaded before the first order takes three of the five units
        assert late.get(Product, product_id).stock == 5

        await _place(sessions, gateway, shipping, user_id, product_id, 3)

        with pytest.raises(InsufficientStock) as exc:
            await order_service.create_order(
                late, gateway, late.get(User, user_id), [OrderLine(product_id, 3)], shipping, PaymentMethod.COD
            )
        assert exc.value.available == 2
    finally:
        late.close()

    assert _stock(sessions, product_id) == 2
    with sessions() as db:
        assert db.query(Order).count() == 1


@pytest.mark.asyncio
async def test_stale_release_returns_nothing(sessions, seeded, gateway, shipping):
    user_id, product_id = seeded
    order_id = await _place(sessions, gateway, shipping, user_id, product_id, 2)
    first, second = sessions(), sessions()
    try:
        order_a = first.get(Order, order_id)
        order_b = second.get(Order, order_id)
        assert order_a.stock_reserved and order_b.stock_reserved

        assert order_service.release_stock(first, order_a) is True
        first.commit()
        assert order_service.release_stock(second, order_b) is False
        second.commit()
        assert order_b.stock_reserved is False
    finally:
        first.close()
        second.close()

    assert _stock(sessions, product_id) == 5


@pytest.mark.asyncio
async def test_overlapping_cancellations_return_stock_once(sessions, seeded, gateway, shipping):
    user_id, product_id = seeded
    order_id = await _place(sessions, gateway, shipping, user_id, product_id, 2)
    assert _stock(sessions, product_id) == 3
    first, second = sessions(), sessions()
    try:
        order_a = first.get(Order, order_id)
        order_b = second.get(Order, order_id)

        order_service.update_status(first, order_a, status=OrderStatus.CANCELLED)
        order_service.update_status(second, order_b, status=OrderStatus.CANCELLED)

        assert order_b.status == OrderStatus.CANCELLED.value
    finally:
        first.close()
        second.close()

    assert _stock(sessions, product_id) == 5


@pytest.mark.asyncio
async def test_cancel_after_expiry_returns_stock_once(sessions, seeded, gateway, shipping):
    user_id, product_id = seeded
    order_id = await _place(sessions, gateway, shipping, user_id, product_id, 2, PaymentMethod.STRIPE,
                            age=timedelta(hours=2))
    admin_db = sessions()
    try:
        stale = admin_db.get(Order, order_id)

        with sessions() as sweep_db:
            released = order_service.release_expired_reservations(sweep_db, TTL)
            assert [o.id for o in released] == [order_id]

        order_service.update_status(admin_db, stale, status=OrderStatus.CANCELLED)
    finally:
        admin_db.close()

    assert _stock(sessions, product_id) == 5


@pytest.mark.asyncio
async def test_payment_during_expiry_sweep_is_kept(sessions, seeded, gateway, shipping, monkeypatch):
    user_id, product_id = seeded
    order_id = await _place(sessions, gateway, shipping, user_id, product_id, 2, PaymentMethod.STRIPE,
                            age=timedelta(hours=2))
    find_expired = order_service._expired_orders
    seen = []

    def paid_meanwhile(db, cutoff):
        found = find_expired(db, cutoff)
        seen.extend(o.id for o in found)
        # The webhook commits between the sweep's read and its write
        with sessions() as webhook_db:
            order = webhook_db.get(Order, order_id)
            assert order_service.mark_order_paid(webhook_db, order, order.payment_intent_id) is True
        return found

    monkeypatch.setattr(order_service, "_expired_orders", paid_meanwhile)
    with sessions() as sweep_db:
        released = order_service.release_expired_reservations(sweep_db, TTL)

    assert seen == [order_id]
    assert released == []
    with sessions() as db:
        order = db.get(Order, order_id)
        assert order.payment_status == PaymentStatus.PAID.value
        assert order.status == OrderStatus.PROCESSING.value
        assert order.stock_reserved is True
        assert [t.location for t in order.tracking_history] == ["Order placed", "Payment confirmed"]
    assert _stock(sessions, product_id) == 3


@pytest.mark.asyncio
async def test_gateway_call_does_not_block_other_checkouts(sessions, seeded, gateway, shipping):
    user_id, product_id = seeded
    create_intent = gateway.create_payment_intent

    async def slow_gateway(amount_minor, currency, metadata):
        # Nothing is reserved yet, and another checkout can still write
        assert _stock(sessions, product_id) == 5
        await _place(sessions, gateway, shipping, user_id, product_id, 1)
        return await create_intent(amount_minor, currency, metadata)

    gateway.create_payment_intent = slow_gateway
    await _place(sessions, gateway, shipping, user_id, product_id, 2, PaymentMethod.STRIPE)

    assert _stock(sessions, product_id) == 2
    with sessions() as db:
        assert db.query(Order).count() == 2
