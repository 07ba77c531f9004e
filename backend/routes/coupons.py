# backend/routes/coupons.py
from typing import List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from database import get_db
from models.coupon import Coupon
from models.users import User
from schemas.coupon import CouponCreate, CouponOut
from utils.audit import write_log, client_ip
from utils.errors import Conflict, NotFound, ValidationFailed
from utils.text import norm_code
from utils.tokenJWT import admin_required

router = APIRouter(prefix="/coupons", tags=["Coupons"])


@router.post("", response_model=CouponOut, status_code=status.HTTP_201_CREATED)
def create_coupon(
    payload: CouponCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    code = norm_code(payload.code)
    if not code:
        raise ValidationFailed("Coupon code is required", errors={"code": "required"})
    if db.query(Coupon).filter(Coupon.code == code).first():
        raise Conflict("Coupon code already exists")

    coupon = Coupon(
        code=code,
        discount=payload.discount,
        discount_type=payload.discount_type.value,
        expires_at=payload.expires_at,
        is_active=True,
    )
    db.add(coupon)
    db.commit()
    db.refresh(coupon)

    write_log(
        db, user_id=current_user.id, action="COUPON_CREATE", resource="coupons",
        ip=client_ip(request), meta={"coupon_id": coupon.id, "code": code},
    )
    return coupon


@router.get("", response_model=List[CouponOut])
def list_coupons(
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    return db.query(Coupon).order_by(Coupon.id.desc()).all()


# Coupons are deactivated rather than removed; carts keep their snapshot
@router.delete("/{coupon_id}", response_model=CouponOut)
def deactivate_coupon(
    coupon_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
    if not coupon:
        raise NotFound("Coupon not found")

    coupon.is_active = False
    db.commit()
    db.refresh(coupon)

    write_log(
        db, user_id=current_user.id, action="COUPON_DEACTIVATE", resource="coupons",
        ip=client_ip(request), meta={"coupon_id": coupon.id, "code": coupon.code},
    )
    return coupon
