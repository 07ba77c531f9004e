from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.order import OrderStatus, PaymentStatus, PaymentMethod
from utils.text import strip_tags


class ShippingAddress(BaseModel):
    full_name: str = Field(min_length=1, max_length=120)
    phone: Optional[str] = Field(None, max_length=40)
    street: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=1, max_length=100)

    @field_validator("*")
    @classmethod
    def _no_markup(cls, v):
        return strip_tags(v) if isinstance(v, str) else v


# Input line for an order placed with explicit items
class OrderLineIn(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)


class OrderCreatePayload(BaseModel):
    items: List[OrderLineIn] = Field(min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.COD


class CheckoutPayload(BaseModel):
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.COD


# Output schema for an individual order line item
class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: Optional[int] = None
    name: str
    quantity: int
    unit_price: float
    discount_price: Optional[float] = None
    line_total: float


class TrackingEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    location: Optional[str] = None
    status: str
    created_at: datetime


class PaymentDetailsOut(BaseModel):
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    payer_email: Optional[str] = None


# Output schema representing the full order details
class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: int
    status: str
    payment_status: str
    payment_method: str
    total: float
    discount_total: float
    grand_total: float
    coupon_code: Optional[str] = None
    items: List[OrderItemOut]
    shipping_address: ShippingAddress
    payment_details: PaymentDetailsOut
    estimated_delivery: Optional[datetime] = None
    tracking_history: List[TrackingEventOut]
    created_at: datetime


# Response for order placement; client_secret is set for card payments
class OrderCreatedResponse(BaseModel):
    order: OrderResponse
    client_secret: Optional[str] = None
    requires_action: bool = False


# Schema for paginated order lists
class OrdersPage(BaseModel):
    items: List[OrderResponse]
    total: int
    page: int
    page_size: int


# Admin update of either state field; any enumerated value is allowed
class OrderStatusUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    location: Optional[str] = Field(None, max_length=200)
    estimated_delivery: Optional[datetime] = None

    @model_validator(mode="after")
    def _something_to_change(self):
        if self.status is None and self.payment_status is None and not self.location \
                and self.estimated_delivery is None:
            raise ValueError("Provide status, payment_status, location or estimated_delivery")
        return self


class TrackingUpdate(BaseModel):
    location: str = Field(min_length=1, max_length=200)
    status: Optional[OrderStatus] = None
    estimated_delivery: Optional[datetime] = None


class TrackingResponse(BaseModel):
    order_id: int
    order_number: str
    status: str
    estimated_delivery: Optional[datetime] = None
    tracking_history: List[TrackingEventOut]


class PaymentConfirmPayload(BaseModel):
    transaction_id: str = Field(min_length=1)
    order_id: int


class ReleaseExpiredResponse(BaseModel):
    released: int
    order_numbers: List[str]
