from typing import List, Optional

from pydantic import BaseModel, Field


# Request schema for adding an item to the cart; prices come from the catalog
class CartAddItem(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)


# Request schema for updating cart item quantity
class CartUpdateItem(BaseModel):
    quantity: int = Field(ge=1)


class CouponApply(BaseModel):
    code: str = Field(min_length=1, max_length=50)


class CartCouponOut(BaseModel):
    code: str
    discount: float
    discount_type: str


# Response schema for a single cart line item
class CartItemOut(BaseModel):
    id: int
    product_id: int
    title: str
    quantity: int
    price: float
    discount_price: Optional[float] = None
    line_total: float


# Response schema for the entire cart summary
class CartOut(BaseModel):
    items: List[CartItemOut]
    coupon: Optional[CartCouponOut] = None
    item_count: int
    total: float
    discount_total: float
    grand_total: float
