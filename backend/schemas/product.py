# backend/schemas/product.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


# Base configuration for ORM compatibility
class ORMBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class CategoryRef(ORMBase):
    id: int
    name: str
    slug: str


# Full product representation
class ProductOut(ORMBase):
    id: int
    title: str
    slug: str
    sku: str
    description: str
    brand: Optional[str] = None
    price: float
    discount_price: Optional[float] = None
    stock: int
    category_id: int
    subcategory_id: Optional[int] = None
    category: Optional[CategoryRef] = None
    main_image_url: Optional[str] = None
    sub_image_urls: List[str] = []
    tags: List[str] = []
    is_featured: bool
    status: str
    rating_average: float
    rating_count: int
    created_at: Optional[datetime] = None


# Compact listing used inside category details
class ProductSummary(ORMBase):
    id: int
    title: str
    slug: str
    price: float
    discount_price: Optional[float] = None
    main_image_url: Optional[str] = None
    stock: int


# Paginated response for product listings
class ProductListPage(ORMBase):
    items: List[ProductOut]
    total: int
    page: int
    page_size: int
