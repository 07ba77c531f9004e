import enum
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, func
from database import Base


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


# Admin-managed discount code; applying it copies its terms into a cart
class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, nullable=False, index=True)
    discount = Column(Float, nullable=False)
    discount_type = Column(String, nullable=False, default=DiscountType.PERCENTAGE.value)
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
