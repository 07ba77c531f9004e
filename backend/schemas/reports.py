# schemas/reports.py
from datetime import datetime, date
from typing import List, Optional
from pydantic import BaseModel


class AdminStats(BaseModel):
    users: int
    orders: int
    products: int
    revenue: float


# Schemas for low stock alerting
class LowStockItem(BaseModel):
    product_id: int
    title: str
    sku: str
    stock: int


class LowStockPage(BaseModel):
    items: List[LowStockItem]
    total: int
    page: int
    page_size: int


# Schemas for sales performance summaries
class SalesSummaryItem(BaseModel):
    date: date
    orders: int
    grand_total: float


class SalesSummaryResponse(BaseModel):
    items: List[SalesSummaryItem]
    total_orders: int
    grand_total: float
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


# Per-product sales across delivered orders
class ProductSaleLine(BaseModel):
    order_id: int
    order_number: str
    customer_name: str
    customer_email: str
    quantity: int
    price: float
    total: float
    date: datetime


class ProductSalesReport(BaseModel):
    product: str
    category: str
    subcategory: str
    total_orders: int
    total_quantity: int
    total_revenue: float
    orders: List[ProductSaleLine]


class InvoiceLine(BaseModel):
    product: str
    category: str
    subcategory: str
    quantity: int
    price: float
    total: float


class InvoiceResponse(BaseModel):
    order_id: int
    order_number: str
    customer_name: str
    customer_email: str
    date: datetime
    items: List[InvoiceLine]
    total: float
    discount_total: float
    grand_total: float
    payment_method: str
    payment_status: str
