import enum
from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from database import Base, utcnow


# Fulfillment state of an order
class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


# Money state of an order, tracked independently of fulfillment
class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    COD = "COD"
    STRIPE = "STRIPE"
    PAYPAL = "PAYPAL"


# Methods settled through the card gateway (intent + webhook)
GATEWAY_METHODS = {PaymentMethod.STRIPE}


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)

    total = Column(Float, nullable=False)
    discount_total = Column(Float, nullable=False, default=0)
    grand_total = Column(Float, nullable=False)
    coupon_code = Column(String, nullable=True)

    status = Column(String, nullable=False, default=OrderStatus.PENDING.value, index=True)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_method = Column(String, nullable=False, default=PaymentMethod.COD.value)

    # Payment integration details
    payment_intent_id = Column(String, nullable=True, index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payer_email = Column(String, nullable=True)

    # True while the ordered quantities are taken out of product stock
    stock_reserved = Column(Boolean, nullable=False, default=False)

    # Shipping address snapshot
    shipping_full_name = Column(String, nullable=True)
    shipping_phone = Column(String, nullable=True)
    shipping_street = Column(String, nullable=True)
    shipping_city = Column(String, nullable=True)
    shipping_state = Column(String, nullable=True)
    shipping_postal_code = Column(String, nullable=True)
    shipping_country = Column(String, nullable=True)

    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User")
    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )
    tracking_history = relationship(
        "TrackingEvent", back_populates="order", cascade="all, delete-orphan", order_by="TrackingEvent.id"
    )

    @property
    def uses_gateway(self) -> bool:
        return self.payment_method in {m.value for m in GATEWAY_METHODS}


# Immutable line snapshot taken at checkout
class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), index=True, nullable=True)
    name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    discount_price = Column(Float, nullable=True)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


# Append-only shipping/audit trail entry
class TrackingEvent(Base):
    __tablename__ = "tracking_events"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    location = Column(String, nullable=True)
    status = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    order = relationship("Order", back_populates="tracking_history")
