# backend/routes/payments.py
import logging

from fastapi import APIRouter, Request, Depends, Header
from sqlalchemy.orm import Session

from database import get_db
from models.order import Order
from models.users import User
from routes.orders import _get_own_order, _order_to_out
from schemas.order import OrderResponse, PaymentConfirmPayload
from services import orders as order_service
from utils.audit import write_log, client_ip
from utils.errors import ValidationFailed
from utils.stripe_client import get_payment_gateway, verify_stripe_signature, parse_event
from utils.tokenJWT import get_current_user

router = APIRouter(tags=["Payments"])
logger = logging.getLogger(__name__)


def _find_order(db: Session, intent: dict):
    # Orders are found by the number stored in the intent metadata, then by intent id
    order_number = (intent.get("metadata") or {}).get("orderId")
    if order_number:
        order = db.query(Order).filter(Order.order_number == order_number).first()
        if order:
            return order
    intent_id = intent.get("id")
    if intent_id:
        return db.query(Order).filter(Order.payment_intent_id == intent_id).first()
    return None


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
):
    settings = request.app.state.settings
    if stripe_signature is None:
        raise ValidationFailed("Missing Stripe-Signature header")

    body = await request.body()
    verified = verify_stripe_signature(
        body, stripe_signature, settings.STRIPE_WEBHOOK_SECRET, settings.WEBHOOK_TOLERANCE_SECONDS
    )
    if not verified:
        logger.warning("Webhook signature verification failed from %s", client_ip(request))
        raise ValidationFailed("Webhook signature verification failed")

    try:
        event = parse_event(body)
    except ValueError:
        raise ValidationFailed("Malformed webhook payload")

    event_type = event["type"]
    intent = (event.get("data") or {}).get("object") or {}
    logger.info("Webhook %s received for intent %s", event_type, intent.get("id"))

    if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        return {"received": True}

    order = _find_order(db, intent)
    if not order:
        logger.warning("Webhook %s refers to an unknown order (intent %s)", event_type, intent.get("id"))
        return {"received": True, "status": "ignored"}

    if event_type == "payment_intent.succeeded":
        changed = order_service.mark_order_paid(
            db, order, transaction_id=intent.get("id"), payer_email=intent.get("receipt_email")
        )
        action = "PAYMENT_CONFIRMED"
    else:
        changed = order_service.mark_payment_failed(db, order)
        action = "PAYMENT_FAILED"

    write_log(
        db, user_id=order.user_id, action=action, resource="payments",
        status="SUCCESS" if changed else "SKIPPED",
        ip=client_ip(request),
        meta={"order_id": order.id, "intent_id": intent.get("id"), "source": "webhook"},
    )
    return {"received": True, "status": "processed" if changed else "duplicate"}


# Client-driven confirmation after the card form completes
@router.post("/payments/confirm", response_model=OrderResponse)
async def confirm_payment(
    payload: PaymentConfirmPayload,
    request: Request,
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    order = _get_own_order(db, payload.order_id, current_user)
    order = await order_service.confirm_payment(db, gateway, order, payload.transaction_id)

    write_log(
        db, user_id=current_user.id, action="PAYMENT_CONFIRM", resource="payments",
        ip=client_ip(request),
        meta={"order_id": order.id, "transaction_id": payload.transaction_id,
              "payment_status": order.payment_status},
    )
    return _order_to_out(order)
