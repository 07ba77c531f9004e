# backend/routes/tracking.py
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from database import get_db
from models.order import Order
from models.users import User
from routes.orders import _get_order, _get_own_order
from schemas.order import TrackingResponse, TrackingUpdate, TrackingEventOut
from services import orders as order_service
from utils.audit import write_log, client_ip
from utils.tokenJWT import get_current_user, admin_required

router = APIRouter(prefix="/track", tags=["Tracking"])


def _tracking_to_out(order: Order) -> TrackingResponse:
    return TrackingResponse(
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        estimated_delivery=order.estimated_delivery,
        tracking_history=[TrackingEventOut.model_validate(t) for t in order.tracking_history],
    )


@router.get("/{order_id}", response_model=TrackingResponse)
def get_tracking(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _tracking_to_out(_get_own_order(db, order_id, current_user))


# Append a shipping checkpoint; optionally moves the order status
@router.post("/{order_id}", response_model=TrackingResponse)
def add_tracking(
    order_id: int,
    payload: TrackingUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    order = _get_order(db, order_id)
    order = order_service.update_status(
        db, order,
        status=payload.status,
        location=payload.location,
        estimated_delivery=payload.estimated_delivery,
    )

    write_log(
        db, user_id=current_user.id, action="ORDER_TRACKING_ADD", resource="orders",
        ip=client_ip(request),
        meta={"order_id": order.id, "location": payload.location, "status": order.status},
    )
    return _tracking_to_out(order)
