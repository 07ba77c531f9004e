# backend/routes/cart.py
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from database import get_db, utcnow
from utils.tokenJWT import get_current_user
from utils.audit import write_log, client_ip
from utils.errors import NotFound, InsufficientStock, ValidationFailed
from utils.text import norm_code
from models.users import User
from models.product import Product
from models.cart import Cart, CartItem
from models.coupon import Coupon
from schemas.cart import CartAddItem, CartUpdateItem, CouponApply, CartOut, CartItemOut, CartCouponOut
from services.pricing import apply_cart_totals, effective_price

router = APIRouter(prefix="/cart", tags=["Cart"])


def _get_cart(db: Session, user_id: int) -> Cart:
    # Retrieve the user's cart or create an empty one
    cart = db.query(Cart).filter(Cart.user_id == user_id).first()
    if not cart:
        cart = Cart(user_id=user_id, total=0, discount_total=0, grand_total=0)
        db.add(cart)
        db.commit()
        db.refresh(cart)
    return cart


def _get_product(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product or product.status != "active":
        raise NotFound("Product not found")
    return product


def _cart_to_out(cart: Cart) -> CartOut:
    items_out = []
    for it in cart.items:
        title = it.product.title if it.product else ""
        items_out.append(CartItemOut(
            id=it.id,
            product_id=it.product_id,
            title=title,
            quantity=it.quantity,
            price=it.price,
            discount_price=it.discount_price,
            line_total=round(effective_price(it.price, it.discount_price) * it.quantity, 2),
        ))

    coupon = None
    if cart.coupon_code:
        coupon = CartCouponOut(
            code=cart.coupon_code, discount=cart.coupon_discount or 0.0, discount_type=cart.coupon_type
        )

    return CartOut(
        items=items_out,
        coupon=coupon,
        item_count=cart.item_count,
        total=cart.total,
        discount_total=cart.discount_total,
        grand_total=cart.grand_total,
    )


def _save(db: Session, cart: Cart) -> CartOut:
    # Totals are always derived from the stored lines and coupon
    db.flush()
    db.refresh(cart)
    apply_cart_totals(cart)
    db.commit()
    db.refresh(cart)
    return _cart_to_out(cart)


@router.get("", response_model=CartOut)
def get_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)
    return _cart_to_out(cart)


@router.post("", response_model=CartOut)
def add_to_cart(
    payload: CartAddItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)
    product = _get_product(db, payload.product_id)

    item = db.query(CartItem).filter(
        CartItem.cart_id == cart.id, CartItem.product_id == product.id
    ).first()

    # Validate stock for the resulting line quantity
    new_qty = payload.quantity + (item.quantity if item else 0)
    if new_qty > product.stock:
        raise InsufficientStock(product.title, product.stock)

    if item:
        item.quantity = new_qty
    else:
        # Price snapshot taken from the catalog, never from the request
        item = CartItem(
            cart_id=cart.id,
            product_id=product.id,
            quantity=payload.quantity,
            price=product.price,
            discount_price=product.discount_price or None,
        )
        db.add(item)

    out = _save(db, cart)
    write_log(
        db,
        user_id=current_user.id,
        action="CART_ADD",
        resource="cart",
        ip=client_ip(request),
        meta={"product_id": product.id, "quantity": payload.quantity, "grand_total": out.grand_total},
    )
    return out


@router.put("/items/{item_id}", response_model=CartOut)
def update_cart_item(
    item_id: int,
    payload: CartUpdateItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)

    item = db.query(CartItem).filter(CartItem.id == item_id, CartItem.cart_id == cart.id).first()
    if not item:
        raise NotFound("Cart item not found")

    product = _get_product(db, item.product_id)
    if payload.quantity > product.stock:
        raise InsufficientStock(product.title, product.stock)

    item.quantity = payload.quantity
    out = _save(db, cart)
    write_log(
        db,
        user_id=current_user.id,
        action="CART_UPDATE",
        resource="cart",
        ip=client_ip(request),
        meta={"item_id": item_id, "quantity": payload.quantity, "grand_total": out.grand_total},
    )
    return out


@router.delete("/items/{item_id}", response_model=CartOut)
def delete_cart_item(
    item_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)

    item = db.query(CartItem).filter(CartItem.id == item_id, CartItem.cart_id == cart.id).first()
    if not item:
        raise NotFound("Cart item not found")

    cart.items.remove(item)
    out = _save(db, cart)
    write_log(
        db,
        user_id=current_user.id,
        action="CART_DELETE",
        resource="cart",
        ip=client_ip(request),
        meta={"item_id": item_id, "grand_total": out.grand_total},
    )
    return out


@router.delete("", response_model=CartOut)
def clear_cart(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)
    cart.items.clear()
    cart.coupon_code = None
    cart.coupon_discount = None
    cart.coupon_type = None

    out = _save(db, cart)
    write_log(db, user_id=current_user.id, action="CART_CLEAR", resource="cart", ip=client_ip(request))
    return out


@router.post("/coupon", response_model=CartOut)
def apply_coupon(
    payload: CouponApply,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)
    code = norm_code(payload.code)

    coupon = db.query(Coupon).filter(Coupon.code == code, Coupon.is_active.is_(True)).first()
    if not coupon:
        raise NotFound("Invalid coupon code")
    expires_at = coupon.expires_at
    if expires_at is not None:
        # SQLite hands back naive datetimes
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=utcnow().tzinfo)
        if expires_at < utcnow():
            raise ValidationFailed("Coupon has expired", errors={"code": "expired"})

    # Snapshot the terms so later catalog edits do not change this cart
    cart.coupon_code = coupon.code
    cart.coupon_discount = coupon.discount
    cart.coupon_type = coupon.discount_type

    out = _save(db, cart)
    write_log(
        db,
        user_id=current_user.id,
        action="CART_COUPON_APPLY",
        resource="cart",
        ip=client_ip(request),
        meta={"code": coupon.code, "grand_total": out.grand_total},
    )
    return out


@router.delete("/coupon", response_model=CartOut)
def remove_coupon(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)
    code = cart.coupon_code
    cart.coupon_code = None
    cart.coupon_discount = None
    cart.coupon_type = None

    out = _save(db, cart)
    write_log(
        db,
        user_id=current_user.id,
        action="CART_COUPON_REMOVE",
        resource="cart",
        ip=client_ip(request),
        meta={"code": code},
    )
    return out
