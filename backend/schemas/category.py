from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.product import ProductSummary


class ORMBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class SubCategoryIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    is_active: bool = True


class SubCategoryOut(ORMBase):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    is_active: bool


class CategoryUpdate(BaseModel):
    """All fields optional; ``subcategories`` replaces the whole list when given."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    seo_keywords: Optional[str] = None
    subcategories: Optional[List[SubCategoryIn]] = None


class CategoryOut(ORMBase):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    seo_keywords: Optional[str] = None
    subcategories: List[SubCategoryOut] = []


class CategoryList(BaseModel):
    categories: List[CategoryOut]


class CategoryDetail(BaseModel):
    category: CategoryOut
    products: List[ProductSummary]
