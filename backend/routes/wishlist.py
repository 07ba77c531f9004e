# backend/routes/wishlist.py
from typing import List

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from models.product import Product
from models.users import User, WishlistItem
from schemas.product import ProductSummary
from utils.audit import write_log, client_ip
from utils.errors import NotFound
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/wishlist", tags=["Wishlist"])


class WishlistToggle(BaseModel):
    product_id: int


class WishlistOut(BaseModel):
    items: List[ProductSummary]
    added: bool = False


def _wishlist_products(db: Session, user_id: int) -> List[Product]:
    return (
        db.query(Product)
        .join(WishlistItem, WishlistItem.product_id == Product.id)
        .filter(WishlistItem.user_id == user_id)
        .order_by(WishlistItem.id)
        .all()
    )


@router.get("", response_model=WishlistOut)
def get_wishlist(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return WishlistOut(items=_wishlist_products(db, current_user.id))


# Adds the product, or removes it when it is already listed
@router.post("", response_model=WishlistOut)
def toggle_wishlist(
    payload: WishlistToggle,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    product = db.query(Product).filter(Product.id == payload.product_id).first()
    if not product:
        raise NotFound("Product not found")

    entry = db.query(WishlistItem).filter(
        WishlistItem.user_id == current_user.id, WishlistItem.product_id == product.id
    ).first()
    if entry:
        db.delete(entry)
        added = False
    else:
        db.add(WishlistItem(user_id=current_user.id, product_id=product.id))
        added = True
    db.commit()

    write_log(db, user_id=current_user.id, action="WISHLIST_ADD" if added else "WISHLIST_REMOVE",
              resource="wishlist", ip=client_ip(request), meta={"product_id": product.id})
    return WishlistOut(items=_wishlist_products(db, current_user.id), added=added)
