# backend/routes/orders.py
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, Query, status
from sqlalchemy.orm import Session

from database import get_db
from models.users import User
from models.order import Order, OrderStatus, PaymentStatus
from schemas.order import (
    OrderResponse, OrdersPage, OrderItemOut, OrderCreatePayload, CheckoutPayload,
    OrderCreatedResponse, OrderStatusUpdate, ShippingAddress, PaymentDetailsOut,
    TrackingEventOut, ReleaseExpiredResponse,
)
from services import orders as order_service
from services.pricing import effective_price
from utils.audit import write_log, client_ip
from utils.errors import NotFound, Forbidden
from utils.stripe_client import get_payment_gateway
from utils.tokenJWT import get_current_user, admin_required

router = APIRouter(prefix="/orders", tags=["Orders"])
user_router = APIRouter(prefix="/user", tags=["Orders"])


# Map Order model to OrderResponse schema
def _order_to_out(order: Order) -> OrderResponse:
    items: List[OrderItemOut] = []
    for it in order.items:
        items.append(OrderItemOut(
            product_id=it.product_id,
            name=it.name,
            quantity=it.quantity,
            unit_price=it.unit_price,
            discount_price=it.discount_price,
            line_total=round(effective_price(it.unit_price, it.discount_price) * it.quantity, 2),
        ))
    address = ShippingAddress.model_construct(
        **{k: getattr(order, f"shipping_{k}") for k in order_service.SHIPPING_FIELDS}
    )
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        total=order.total,
        discount_total=order.discount_total,
        grand_total=order.grand_total,
        coupon_code=order.coupon_code,
        items=items,
        shipping_address=address,
        payment_details=PaymentDetailsOut(
            transaction_id=order.payment_intent_id, paid_at=order.paid_at, payer_email=order.payer_email
        ),
        estimated_delivery=order.estimated_delivery,
        tracking_history=[TrackingEventOut.model_validate(t) for t in order.tracking_history],
        created_at=order.created_at,
    )


def _get_order(db: Session, order_id: int) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFound("Order not found")
    return order


def _get_own_order(db: Session, order_id: int, user: User) -> Order:
    # Owners see their orders, admins see every order
    order = _get_order(db, order_id)
    if order.user_id != user.id and not user.is_admin:
        raise Forbidden("Not authorized to view this order")
    return order


def _paginate(query, page: int, page_size: int) -> OrdersPage:
    total = query.count()
    rows = query.order_by(Order.created_at.desc(), Order.id.desc()) \
        .offset((page - 1) * page_size).limit(page_size).all()
    return OrdersPage(items=[_order_to_out(o) for o in rows], total=total, page=page, page_size=page_size)


def _created(placed: order_service.PlacedOrder) -> OrderCreatedResponse:
    return OrderCreatedResponse(
        order=_order_to_out(placed.order),
        client_secret=placed.client_secret,
        requires_action=placed.requires_action,
    )


# Place an order for explicit items; prices are read from the catalog
@router.post("", response_model=OrderCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreatePayload,
    request: Request,
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    settings = request.app.state.settings
    lines = [order_service.OrderLine(it.product_id, it.quantity) for it in payload.items]
    placed = await order_service.create_order(
        db, gateway, current_user, lines,
        payload.shipping_address.model_dump(),
        payload.payment_method,
        currency=settings.CURRENCY,
    )

    write_log(
        db, user_id=current_user.id, action="ORDER_CREATE", resource="orders",
        ip=client_ip(request),
        meta={"order_id": placed.order.id, "order_number": placed.order.order_number,
              "grand_total": placed.order.grand_total, "payment_method": placed.order.payment_method},
    )
    return _created(placed)


# Place an order from the caller's cart and empty it
@router.post("/checkout", response_model=OrderCreatedResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    payload: CheckoutPayload,
    request: Request,
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    settings = request.app.state.settings
    placed = await order_service.checkout_cart(
        db, gateway, current_user,
        payload.shipping_address.model_dump(),
        payload.payment_method,
        currency=settings.CURRENCY,
    )

    write_log(
        db, user_id=current_user.id, action="ORDER_CHECKOUT", resource="orders",
        ip=client_ip(request),
        meta={"order_id": placed.order.id, "order_number": placed.order.order_number,
              "grand_total": placed.order.grand_total, "payment_method": placed.order.payment_method},
    )
    return _created(placed)


# List all orders (admin)
@router.get("", response_model=OrdersPage)
def list_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None),
    user_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    q = db.query(Order)
    if status_filter:
        q = q.filter(Order.status == status_filter.value)
    if payment_status:
        q = q.filter(Order.payment_status == payment_status.value)
    if user_id:
        q = q.filter(Order.user_id == user_id)
    return _paginate(q, page, page_size)


# Give back the stock of unpaid card orders older than the reservation window
@router.post("/release-expired", response_model=ReleaseExpiredResponse)
def release_expired(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    settings = request.app.state.settings
    released = order_service.release_expired_reservations(
        db, timedelta(minutes=settings.RESERVATION_TTL_MINUTES)
    )
    numbers = [o.order_number for o in released]

    write_log(
        db, user_id=current_user.id, action="ORDER_RELEASE_EXPIRED", resource="orders",
        ip=client_ip(request), meta={"released": len(numbers)},
    )
    return ReleaseExpiredResponse(released=len(numbers), order_numbers=numbers)


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _order_to_out(_get_own_order(db, order_id, current_user))


# Admin override of fulfillment and payment state
@router.put("/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    order = _get_order(db, order_id)
    old_status, old_payment = order.status, order.payment_status

    order = order_service.update_status(
        db, order,
        status=payload.status,
        payment_status=payload.payment_status,
        location=payload.location,
        estimated_delivery=payload.estimated_delivery,
    )

    write_log(
        db, user_id=current_user.id, action="ORDER_STATUS_UPDATE", resource="orders",
        ip=client_ip(request),
        meta={"order_id": order.id, "from": old_status, "to": order.status,
              "payment_from": old_payment, "payment_to": order.payment_status},
    )
    return _order_to_out(order)


@router.delete("/{order_id}")
def delete_order(
    order_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    order = _get_order(db, order_id)
    number = order.order_number
    order_service.delete_order(db, order)

    write_log(
        db, user_id=current_user.id, action="ORDER_DELETE", resource="orders",
        ip=client_ip(request), meta={"order_id": order_id, "order_number": number},
    )
    return {"detail": f"Order {number} deleted"}


# The caller's own orders
@user_router.get("/orders", response_model=OrdersPage)
def my_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    q = db.query(Order).filter(Order.user_id == current_user.id)
    return _paginate(q, page, page_size)


@user_router.get("/orders/{order_id}", response_model=OrderResponse)
def my_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = db.query(Order).filter(Order.id == order_id, Order.user_id == current_user.id).first()
    if not order:
        raise NotFound("Order not found")
    return _order_to_out(order)
