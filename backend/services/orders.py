# backend/services/orders.py
"""Order lifecycle: placement, stock reservation, payment and fulfillment.

An order carries two independent state fields. ``status`` follows the
parcel (pending -> processing -> shipped -> delivered, or cancelled /
returned) and ``payment_status`` follows the money (pending -> paid, or
failed / refunded / cancelled).

Stock is reserved when the order is placed, whatever the payment method,
using conditional ``UPDATE ... WHERE stock >= :qty`` statements so two
concurrent checkouts can never oversell. A reservation is given back once
when the order is cancelled or when an unpaid card order outlives
``RESERVATION_TTL_MINUTES``. Payment confirmation never touches stock for
an order that still holds its reservation, and is guarded by a conditional
update on ``payment_status`` so the webhook and the client-side
confirmation can both run without double effects.
"""
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Mapping, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from database import utcnow
from models.cart import Cart
from models.order import (
    Order, OrderItem, TrackingEvent, OrderStatus, PaymentStatus, PaymentMethod, GATEWAY_METHODS
)
from models.product import Product
from models.users import User
from services.pricing import PricedLine, CouponTerms, compute_totals, cart_coupon, apply_cart_totals
from utils.errors import NotFound, InsufficientStock, ValidationFailed, PaymentFailed
from utils.stripe_client import to_minor_units

logger = logging.getLogger(__name__)

SHIPPING_FIELDS = ("full_name", "phone", "street", "city", "state", "postal_code", "country")


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int


@dataclass
class PlacedOrder:
    order: Order
    client_secret: Optional[str] = None
    requires_action: bool = False


def generate_order_number() -> str:
    # Millisecond prefix keeps numbers sortable, 48 random bits keep them unique
    millis = int(time.time() * 1000)
    return f"ORD-{millis:013d}-{uuid.uuid4().hex[:12].upper()}"


def add_tracking(order: Order, location: Optional[str], status: str) -> TrackingEvent:
    event = TrackingEvent(location=location, status=status, created_at=utcnow())
    order.tracking_history.append(event)
    return event


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------

def _expire_stock(db: Session, product_id: int) -> None:
    # Loaded Product rows no longer reflect a statement-level stock change
    product = db.identity_map.get(Session.identity_key(Product, product_id))
    if product is not None:
        db.expire(product, ["stock"])


def reserve_stock(db: Session, product_id: int, quantity: int) -> bool:
    """Atomically takes ``quantity`` units out of stock if that many are left."""
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    _expire_stock(db, product_id)
    return result.rowcount == 1


def return_stock(db: Session, product_id: int, quantity: int) -> None:
    db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    _expire_stock(db, product_id)


def _reserve_order_items(db: Session, order: Order) -> bool:
    # All or nothing: undo the lines already taken when one line is short
    taken = []
    for item in order.items:
        if item.product_id is None:
            continue
        if not reserve_stock(db, item.product_id, item.quantity):
            for product_id, quantity in taken:
                return_stock(db, product_id, quantity)
            return False
        taken.append((item.product_id, item.quantity))
    return True


def _return_order_items(db: Session, order: Order) -> None:
    for item in order.items:
        if item.product_id is not None:
            return_stock(db, item.product_id, item.quantity)


def release_stock(db: Session, order: Order) -> bool:
    """Gives an order's reserved quantities back to the catalog, once.

    The reservation is claimed with a conditional update on ``stock_reserved``,
    so when two sessions release the same order only one of them returns stock.
    """
    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.stock_reserved.is_(True))
        .values(stock_reserved=False)
        .execution_options(synchronize_session=False)
    )
    db.expire(order, ["stock_reserved"])
    if result.rowcount != 1:
        return False
    _return_order_items(db, order)
    return True


def _merge_lines(lines: Iterable[OrderLine]) -> "OrderedDict[int, int]":
    merged: "OrderedDict[int, int]" = OrderedDict()
    for line in lines:
        if line.quantity < 1:
            raise ValidationFailed("Invalid quantity", errors={"quantity": "must be at least 1"})
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return merged


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------

async def create_order(
    db: Session,
    gateway,
    user: User,
    lines: Iterable[OrderLine],
    shipping_address: Mapping[str, Optional[str]],
    payment_method: PaymentMethod,
    coupon: Optional[CouponTerms] = None,
    currency: str = "usd",
) -> PlacedOrder:
    """Validates, prices and persists an order, reserving its stock.

    Any failure (unknown product, short stock, gateway error) rolls the whole
    order back: nothing is saved and no stock moves.
    """
    merged = _merge_lines(lines)
    if not merged:
        raise ValidationFailed("No items in order", errors={"items": "at least one item is required"})

    method = PaymentMethod(payment_method)
    try:
        products = {}
        for product_id, quantity in merged.items():
            product = db.query(Product).filter(Product.id == product_id).first()
            if product is None or product.status != "active":
                raise NotFound(f"Product not found: {product_id}")
            if product.stock < quantity:
                raise InsufficientStock(product.title, product.stock)
            products[product_id] = product

        totals = compute_totals(
            [PricedLine(qty, products[pid].price, products[pid].discount_price) for pid, qty in merged.items()],
            coupon,
        )

        order = Order(
            order_number=generate_order_number(),
            user_id=user.id,
            total=totals.total,
            discount_total=totals.discount_total,
            grand_total=totals.grand_total,
            coupon_code=coupon.code if coupon else None,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=method.value,
            created_at=utcnow(),
            **{f"shipping_{k}": shipping_address.get(k) for k in SHIPPING_FIELDS},
        )
        for product_id, quantity in merged.items():
            product = products[product_id]
            order.items.append(OrderItem(
                product_id=product.id,
                name=product.title,
                quantity=quantity,
                unit_price=product.price,
                discount_price=product.discount_price or None,
            ))
        add_tracking(order, "Order placed", OrderStatus.PENDING.value)

        # No stock row is written while the gateway call is in flight. An
        # intent left behind by a lost reservation race is never confirmed.
        placed = PlacedOrder(order=order)
        if method in GATEWAY_METHODS:
            intent = await gateway.create_payment_intent(
                to_minor_units(order.grand_total),
                currency,
                {"orderId": order.order_number, "userId": str(user.id)},
            )
            order.payment_intent_id = intent.id
            placed.client_secret = intent.client_secret
            placed.requires_action = intent.requires_action

        db.add(order)
        # The read above is only a fast path; this is the authoritative check
        for product_id, quantity in merged.items():
            if not reserve_stock(db, product_id, quantity):
                product = products[product_id]
                db.refresh(product)
                raise InsufficientStock(product.title, product.stock)
        order.stock_reserved = True
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "Order %s placed by user %s: %s item(s), grand total %.2f via %s",
        order.order_number, user.id, len(order.items), order.grand_total, order.payment_method,
    )
    return placed


async def checkout_cart(
    db: Session,
    gateway,
    user: User,
    shipping_address: Mapping[str, Optional[str]],
    payment_method: PaymentMethod,
    currency: str = "usd",
) -> PlacedOrder:
    """Places an order for the caller's cart lines and coupon, then empties the cart."""
    cart = db.query(Cart).filter(Cart.user_id == user.id).first()
    if cart is None or not cart.items:
        raise ValidationFailed("Cart is empty")

    lines = [OrderLine(it.product_id, it.quantity) for it in cart.items]
    placed = await create_order(
        db, gateway, user, lines, shipping_address, payment_method,
        coupon=cart_coupon(cart), currency=currency,
    )

    db.refresh(cart)
    cart.items.clear()
    cart.coupon_code = None
    cart.coupon_discount = None
    cart.coupon_type = None
    apply_cart_totals(cart)
    db.commit()
    db.refresh(placed.order)
    return placed


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------

def mark_order_paid(
    db: Session, order: Order, transaction_id: Optional[str] = None, payer_email: Optional[str] = None
) -> bool:
    """Records a successful payment. Returns False when it was already recorded."""
    values = {"payment_status": PaymentStatus.PAID.value, "paid_at": utcnow(), "updated_at": utcnow()}
    if transaction_id:
        values["payment_intent_id"] = transaction_id
    if payer_email:
        values["payer_email"] = payer_email

    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.payment_status != PaymentStatus.PAID.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        db.refresh(order)
        logger.info("Payment for order %s already recorded", order.order_number)
        return False

    db.refresh(order)
    reacquired = False
    if not order.stock_reserved:
        # The reservation lapsed before the money arrived
        if _reserve_order_items(db, order):
            order.stock_reserved = True
            reacquired = True
        else:
            logger.error(
                "Order %s was paid after its stock was released and can no longer be filled; refund required",
                order.order_number,
            )

    if order.stock_reserved and (
        order.status == OrderStatus.PENDING.value
        or (reacquired and order.status == OrderStatus.CANCELLED.value)
    ):
        order.status = OrderStatus.PROCESSING.value
    add_tracking(order, "Payment confirmed", order.status)
    db.commit()
    db.refresh(order)
    logger.info("Order %s marked paid (transaction %s)", order.order_number, order.payment_intent_id)
    return True


def mark_payment_failed(db: Session, order: Order) -> bool:
    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.payment_status == PaymentStatus.PENDING.value)
        .values(payment_status=PaymentStatus.FAILED.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        db.refresh(order)
        return False

    db.refresh(order)
    add_tracking(order, "Payment failed", order.status)
    db.commit()
    db.refresh(order)
    logger.warning("Payment failed for order %s", order.order_number)
    return True


async def confirm_payment(db: Session, gateway, order: Order, transaction_id: str) -> Order:
    """Checks the gateway and, if the intent succeeded, records the payment."""
    if not order.uses_gateway:
        raise ValidationFailed("Order is not paid by card", errors={"order_id": "payment method has no gateway"})
    if order.payment_intent_id and order.payment_intent_id != transaction_id:
        raise ValidationFailed("Payment does not belong to this order", errors={"transaction_id": "mismatch"})
    if order.payment_status == PaymentStatus.PAID.value:
        return order

    intent = await gateway.retrieve_payment_intent(transaction_id)
    owner = intent.metadata.get("orderId")
    if owner is not None and owner != order.order_number:
        raise ValidationFailed("Payment does not belong to this order", errors={"transaction_id": "mismatch"})
    if not intent.succeeded:
        raise PaymentFailed(f"Payment not completed (status: {intent.status})")

    mark_order_paid(db, order, intent.id, intent.receipt_email)
    return order


# ---------------------------------------------------------------------------
# Fulfillment
# ---------------------------------------------------------------------------

def update_status(
    db: Session,
    order: Order,
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    location: Optional[str] = None,
    estimated_delivery: Optional[datetime] = None,
) -> Order:
    """Admin override of either state field; any enumerated value is accepted."""
    if status is not None:
        new_status = OrderStatus(status).value
        if new_status == OrderStatus.CANCELLED.value:
            # Another session may have cancelled or expired it since it was loaded
            db.refresh(order)
            if order.status in (OrderStatus.PENDING.value, OrderStatus.PROCESSING.value):
                release_stock(db, order)
        order.status = new_status
    if payment_status is not None:
        order.payment_status = PaymentStatus(payment_status).value
    if estimated_delivery is not None:
        order.estimated_delivery = estimated_delivery
    if location:
        add_tracking(order, location, order.status)

    db.commit()
    db.refresh(order)
    return order


UNPAID_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)


def _expired_orders(db: Session, cutoff: datetime) -> List[Order]:
    return (
        db.query(Order)
        .filter(
            Order.payment_method.in_([m.value for m in GATEWAY_METHODS]),
            Order.payment_status.in_(UNPAID_STATUSES),
            Order.status == OrderStatus.PENDING.value,
            Order.stock_reserved.is_(True),
            Order.created_at < cutoff,
        )
        .all()
    )


def release_expired_reservations(db: Session, ttl: timedelta) -> List[Order]:
    """Cancels unpaid card orders older than ``ttl`` and returns their stock.

    Each order is cancelled by one conditional update that repeats the
    selection criteria, so an order paid after the read is left alone.
    """
    cutoff = utcnow() - ttl
    released = []
    for order in _expired_orders(db, cutoff):
        result = db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.status == OrderStatus.PENDING.value,
                Order.payment_status.in_(UNPAID_STATUSES),
                Order.stock_reserved.is_(True),
            )
            .values(
                status=OrderStatus.CANCELLED.value,
                payment_status=PaymentStatus.CANCELLED.value,
                stock_reserved=False,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        db.expire(order, ["status", "payment_status", "stock_reserved", "updated_at"])
        if result.rowcount != 1:
            db.rollback()
            logger.info("Order %s changed state during expiry, skipped", order.order_number)
            continue

        _return_order_items(db, order)
        add_tracking(order, "Payment window expired", OrderStatus.CANCELLED.value)
        db.commit()
        released.append(order)

    if released:
        logger.info("Released stock of %s expired order(s)", len(released))
    return released


def delete_order(db: Session, order: Order) -> None:
    # Hard delete; reserved stock is intentionally not returned
    db.delete(order)
    db.commit()
