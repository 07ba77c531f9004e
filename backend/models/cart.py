from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Float, UniqueConstraint, func
from sqlalchemy.orm import relationship
from database import Base


# Represents the user's shopping cart (one per user)
class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True, nullable=False)

    # Embedded coupon snapshot
    coupon_code = Column(String, nullable=True)
    coupon_discount = Column(Float, nullable=True)
    coupon_type = Column(String, nullable=True)  # percentage | fixed

    # Derived from items + coupon by services.pricing, never from input
    total = Column(Float, nullable=False, default=0)
    discount_total = Column(Float, nullable=False, default=0)
    grand_total = Column(Float, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # One-to-many relationship with cart items
    items = relationship(
        "CartItem", back_populates="cart", cascade="all, delete-orphan", order_by="CartItem.id"
    )

    @property
    def item_count(self) -> int:
        return sum(it.quantity for it in self.items)


# Represents a single product line within a cart
class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), index=True, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    # Prices at the moment of addition
    price = Column(Float, nullable=False)
    discount_price = Column(Float, nullable=True)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")

    __table_args__ = (
        # Unique constraint to prevent duplicate product entries in the same cart
        UniqueConstraint("cart_id", "product_id", name="uq_cartitem_cart_product"),
    )
