# routes/reports.py
from collections import OrderedDict
from datetime import datetime, time
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from utils.errors import NotFound
from utils.tokenJWT import admin_required, get_current_user
from models.users import User
from models.product import Product
from models.order import Order, OrderItem, OrderStatus
from routes.orders import _get_own_order
from services.pricing import effective_price
from schemas.reports import (
    LowStockPage, LowStockItem,
    SalesSummaryResponse, SalesSummaryItem,
    ProductSalesReport, ProductSaleLine,
    InvoiceResponse, InvoiceLine,
)

router = APIRouter(prefix="/reports", tags=["Reports"])

# Orders that did not turn into revenue
EXCLUDED_STATUSES = (OrderStatus.CANCELLED.value, OrderStatus.RETURNED.value)


def _names(product: Optional[Product]):
    if product is None:
        return "", ""
    category = product.category.name if product.category else ""
    subcategory = product.subcategory.name if product.subcategory else ""
    return category, subcategory


# -----------------------------
# 1) Low stock
# -----------------------------
@router.get("/low-stock", response_model=LowStockPage)
def report_low_stock(
    threshold: int = Query(10, ge=0, description="Stock threshold (<=)"),
    q: Optional[str] = Query(None, description="Search by title or SKU"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    query = db.query(Product).filter(Product.stock <= threshold)
    if q:
        like = f"%{q}%"
        query = query.filter((Product.title.ilike(like)) | (Product.sku.ilike(like)))

    total = query.count()
    rows = (query
            .order_by(Product.stock.asc(), Product.title.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all())

    items: List[LowStockItem] = [
        LowStockItem(product_id=p.id, title=p.title, sku=p.sku, stock=p.stock or 0)
        for p in rows
    ]
    return {"items": items, "total": total, "page": page, "page_size": page_size}


# -----------------------------
# 2) Sales summary per day
# -----------------------------
@router.get("/sales-summary", response_model=SalesSummaryResponse)
def report_sales_summary(
    date_from: Optional[datetime] = Query(None, description="ISO datetime from"),
    date_to: Optional[datetime] = Query(None, description="ISO datetime to"),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    q = db.query(Order.created_at, Order.grand_total).filter(Order.status.notin_(EXCLUDED_STATUSES))
    if date_from:
        q = q.filter(Order.created_at >= date_from)
    if date_to:
        if date_to.time() == time(0, 0):
            date_to = datetime.combine(date_to.date(), time(23, 59, 59))
        q = q.filter(Order.created_at <= date_to)

    # Grouped in Python so the day boundary is the same on every backend
    per_day = OrderedDict()
    for created_at, grand_total in q.order_by(Order.created_at.asc()).all():
        day = created_at.date()
        orders, amount = per_day.get(day, (0, 0.0))
        per_day[day] = (orders + 1, amount + (grand_total or 0.0))

    items: List[SalesSummaryItem] = [
        SalesSummaryItem(date=day, orders=orders, grand_total=round(amount, 2))
        for day, (orders, amount) in per_day.items()
    ]
    return SalesSummaryResponse(
        items=items,
        total_orders=sum(i.orders for i in items),
        grand_total=round(sum(i.grand_total for i in items), 2),
        date_from=date_from,
        date_to=date_to,
    )


# -----------------------------
# 3) Sales of one product across delivered orders
# -----------------------------
@router.get("/product-sales/{product_id}", response_model=ProductSalesReport)
def report_product_sales(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFound("Product not found")

    rows = (
        db.query(OrderItem, Order)
        .join(Order, OrderItem.order_id == Order.id)
        .filter(OrderItem.product_id == product_id, Order.status == OrderStatus.DELIVERED.value)
        .order_by(Order.created_at.desc())
        .all()
    )

    lines: List[ProductSaleLine] = []
    for item, order in rows:
        price = effective_price(item.unit_price, item.discount_price)
        lines.append(ProductSaleLine(
            order_id=order.id,
            order_number=order.order_number,
            customer_name=order.user.name if order.user else "",
            customer_email=order.user.email if order.user else "",
            quantity=item.quantity,
            price=price,
            total=round(price * item.quantity, 2),
            date=order.created_at,
        ))

    category, subcategory = _names(product)
    return ProductSalesReport(
        product=product.title,
        category=category,
        subcategory=subcategory,
        total_orders=len({line.order_id for line in lines}),
        total_quantity=sum(line.quantity for line in lines),
        total_revenue=round(sum(line.total for line in lines), 2),
        orders=lines,
    )


# -----------------------------
# 4) Invoice view of one order (owner or admin)
# -----------------------------
@router.get("/invoice/{order_id}", response_model=InvoiceResponse)
def report_invoice(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = _get_own_order(db, order_id, current_user)

    items: List[InvoiceLine] = []
    for it in order.items:
        category, subcategory = _names(it.product)
        price = effective_price(it.unit_price, it.discount_price)
        items.append(InvoiceLine(
            product=it.name,
            category=category,
            subcategory=subcategory,
            quantity=it.quantity,
            price=price,
            total=round(price * it.quantity, 2),
        ))

    return InvoiceResponse(
        order_id=order.id,
        order_number=order.order_number,
        customer_name=order.user.name if order.user else "",
        customer_email=order.user.email if order.user else "",
        date=order.created_at,
        items=items,
        total=order.total,
        discount_total=order.discount_total,
        grand_total=order.grand_total,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
    )
