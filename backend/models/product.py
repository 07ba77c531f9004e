# backend/models/product.py
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, ForeignKey, DateTime, JSON, CheckConstraint, func
)
from sqlalchemy.orm import relationship
from database import Base


# Model Product
# A sellable catalog entry. Stock is only changed through conditional
# updates in services.orders so it never goes below zero.
class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False, index=True)
    slug = Column(String, unique=True, nullable=False, index=True)
    sku = Column(String, unique=True, nullable=False, index=True)
    description = Column(String, nullable=False)
    brand = Column(String, nullable=True)

    price = Column(Float, CheckConstraint("price >= 0"), nullable=False)
    discount_price = Column(Float, default=0, nullable=True)
    stock = Column(Integer, CheckConstraint("stock >= 0"), nullable=False, default=0)

    category_id = Column(Integer, ForeignKey("categories.id"), index=True, nullable=False)
    subcategory_id = Column(Integer, ForeignKey("subcategories.id"), index=True, nullable=True)

    main_image_url = Column(String, nullable=True)
    sub_image_urls = Column(JSON, default=list)
    tags = Column(JSON, default=list)

    is_featured = Column(Boolean, default=False, nullable=False)
    status = Column(String, default="active", nullable=False)  # active | inactive | archived

    # Aggregate kept in sync by review creation/deletion
    rating_average = Column(Float, default=0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    category = relationship("Category")
    subcategory = relationship("SubCategory")
