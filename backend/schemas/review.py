from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.text import strip_tags


class ReviewCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)

    @field_validator("comment")
    @classmethod
    def _no_markup(cls, v: Optional[str]) -> Optional[str]:
        return strip_tags(v) if v is not None else None


class ReviewAuthor(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class ReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    rating: int
    comment: Optional[str] = None
    user: ReviewAuthor
    created_at: datetime


class ReviewPage(BaseModel):
    reviews: List[ReviewOut]
    page: int
    pages: int
    total: int
