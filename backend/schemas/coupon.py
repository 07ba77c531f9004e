from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models.coupon import DiscountType


class CouponCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    discount: float = Field(ge=0)
    discount_type: DiscountType = DiscountType.PERCENTAGE
    expires_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _percentage_range(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.discount > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class CouponOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    discount: float
    discount_type: str
    is_active: bool
    expires_at: Optional[datetime] = None
