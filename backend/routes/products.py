# backend/routes/products.py
from typing import Optional, List

from fastapi import APIRouter, Depends, Query, Request, UploadFile, File, Form
from sqlalchemy import or_
from sqlalchemy.orm import Session

from database import get_db
from utils.tokenJWT import admin_required
from utils.audit import write_log, client_ip
from utils.errors import NotFound, Conflict, ValidationFailed
from utils.text import strip_tags, slugify, norm_code
from utils.uploads import save_image, remove_image
from models.users import User
from models.product import Product
from models.category import Category, SubCategory
from models.cart import Cart, CartItem
from models.order import OrderItem
from models.review import Review
from models.users import WishlistItem
import schemas.product as product_schemas
from services.pricing import apply_cart_totals

router = APIRouter(tags=["Products"])

PRODUCT_STATUSES = {"active", "inactive", "archived"}
MAX_SUB_IMAGES = 4


# ---- HELPERS ----
def _split_tags(tags: Optional[str]) -> List[str]:
    if not tags:
        return []
    return [t.strip() for t in tags.split(",") if t.strip()]


def _check_prices(price: Optional[float], discount_price: Optional[float], stock: Optional[int]) -> None:
    errors = {}
    if price is not None and price < 0:
        errors["price"] = "must be >= 0"
    if discount_price is not None and discount_price < 0:
        errors["discount_price"] = "must be >= 0"
    if stock is not None and stock < 0:
        errors["stock"] = "must be >= 0"
    if errors:
        raise ValidationFailed("Invalid product data", errors=errors)


def _check_category(db: Session, category_id: int, subcategory_id: Optional[int]) -> None:
    category = db.query(Category).filter(Category.id == category_id).first()
    if not category:
        raise NotFound("Category not found")
    if subcategory_id is not None:
        sub = db.query(SubCategory).filter(SubCategory.id == subcategory_id).first()
        if not sub or sub.category_id != category.id:
            raise ValidationFailed(
                "Subcategory does not belong to the category", errors={"subcategory_id": "invalid"}
            )


def _save_sub_images(files: Optional[List[UploadFile]], upload_dir: str) -> Optional[List[str]]:
    files = [f for f in (files or []) if f is not None and f.filename]
    if not files:
        return None
    if len(files) > MAX_SUB_IMAGES:
        raise ValidationFailed(f"At most {MAX_SUB_IMAGES} sub images", errors={"sub_images": "too many"})
    return [save_image(f, upload_dir) for f in files]


# =========================
# PRODUCT LIST
# =========================
@router.get("/products", response_model=product_schemas.ProductListPage)
def list_products(
    q: Optional[str] = Query(None, description="Search in title, description and brand"),
    category_id: Optional[int] = Query(None),
    subcategory_id: Optional[int] = Query(None),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    featured: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(12, ge=1, le=100),
    sort_by: str = Query("created_at"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    query = db.query(Product).filter(Product.status == "active")

    if q:
        like = f"%{q}%"
        query = query.filter(or_(
            Product.title.ilike(like), Product.description.ilike(like), Product.brand.ilike(like)
        ))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if subcategory_id is not None:
        query = query.filter(Product.subcategory_id == subcategory_id)
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)
    if featured is not None:
        query = query.filter(Product.is_featured.is_(featured))

    allowed = {
        "created_at": Product.created_at, "price": Product.price, "title": Product.title,
        "rating": Product.rating_average, "id": Product.id,
    }
    sort_col = allowed.get(sort_by.lower(), Product.created_at)
    query = query.order_by(sort_col.asc() if order == "asc" else sort_col.desc(), Product.id.desc())

    total = query.count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/products/subcategory/{subcategory_id}", response_model=List[product_schemas.ProductOut])
def products_by_subcategory(subcategory_id: int, db: Session = Depends(get_db)):
    sub = db.query(SubCategory).filter(SubCategory.id == subcategory_id).first()
    if not sub:
        raise NotFound("Subcategory not found")
    return (
        db.query(Product)
        .filter(Product.subcategory_id == sub.id, Product.status == "active")
        .order_by(Product.created_at.desc(), Product.id.desc())
        .all()
    )


# =========================
# SINGLE PRODUCT
# =========================
@router.get("/products/{slug}", response_model=product_schemas.ProductOut)
def get_product(slug: str, db: Session = Depends(get_db)):
    product = db.query(Product).filter(Product.slug == slug).first()
    if not product:
        raise NotFound("Product not found")
    return product


# =========================
# CREATE PRODUCT
# =========================
@router.post("/products", response_model=product_schemas.ProductOut, status_code=201)
def add_product(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
    main_image: Optional[UploadFile] = File(None),
    sub_images: Optional[List[UploadFile]] = File(None),
    title: str = Form(...),
    sku: str = Form(...),
    description: str = Form(...),
    price: float = Form(...),
    stock: int = Form(...),
    category_id: int = Form(...),
    subcategory_id: Optional[int] = Form(None),
    discount_price: Optional[float] = Form(None),
    brand: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    is_featured: bool = Form(False),
    status: str = Form("active"),
):
    upload_dir = request.app.state.settings.UPLOAD_DIR
    title = strip_tags(title)
    sku_code = norm_code(sku)
    if not title or not sku_code:
        raise ValidationFailed("Title and SKU are required", errors={"title": "required", "sku": "required"})
    if status not in PRODUCT_STATUSES:
        raise ValidationFailed("Invalid status", errors={"status": "must be active, inactive or archived"})
    _check_prices(price, discount_price, stock)
    _check_category(db, category_id, subcategory_id)

    if db.query(Product).filter(Product.sku == sku_code).first():
        raise Conflict("Product SKU already exists", errors={"sku": "already exists"})
    slug = slugify(title)
    if db.query(Product).filter(Product.slug == slug).first():
        raise Conflict("Product with this title already exists", errors={"title": "slug already exists"})

    main_url = save_image(main_image, upload_dir) if main_image and main_image.filename else None
    sub_urls = _save_sub_images(sub_images, upload_dir) or []

    new_product = Product(
        title=title, slug=slug, sku=sku_code, description=strip_tags(description),
        brand=strip_tags(brand), price=price, discount_price=discount_price or 0, stock=stock,
        category_id=category_id, subcategory_id=subcategory_id,
        main_image_url=main_url, sub_image_urls=sub_urls, tags=_split_tags(tags),
        is_featured=is_featured, status=status,
    )
    db.add(new_product)
    db.commit()
    db.refresh(new_product)

    write_log(
        db, user_id=current_user.id, action="PRODUCT_CREATE", resource="products",
        ip=client_ip(request), meta={"id": new_product.id, "sku": new_product.sku},
    )
    return new_product


# =========================
# UPDATE PRODUCT (multipart, every field optional)
# =========================
@router.put("/products/{product_id}", response_model=product_schemas.ProductOut)
def update_product(
    product_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
    main_image: Optional[UploadFile] = File(None),
    sub_images: Optional[List[UploadFile]] = File(None),
    title: Optional[str] = Form(None),
    sku: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    stock: Optional[int] = Form(None),
    category_id: Optional[int] = Form(None),
    subcategory_id: Optional[int] = Form(None),
    discount_price: Optional[float] = Form(None),
    brand: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    is_featured: Optional[bool] = Form(None),
    status: Optional[str] = Form(None),
):
    upload_dir = request.app.state.settings.UPLOAD_DIR
    p = db.query(Product).filter(Product.id == product_id).first()
    if not p:
        raise NotFound("Product not found")

    _check_prices(price, discount_price, stock)
    if status is not None and status not in PRODUCT_STATUSES:
        raise ValidationFailed("Invalid status", errors={"status": "must be active, inactive or archived"})
    if category_id is not None or subcategory_id is not None:
        _check_category(
            db,
            category_id if category_id is not None else p.category_id,
            subcategory_id if subcategory_id is not None else p.subcategory_id,
        )

    if title is not None:
        title = strip_tags(title)
        slug = slugify(title)
        if slug != p.slug and db.query(Product).filter(Product.slug == slug, Product.id != p.id).first():
            raise Conflict("Product with this title already exists", errors={"title": "slug already exists"})
        p.title, p.slug = title, slug
    if sku is not None:
        c = norm_code(sku)
        if c != p.sku and db.query(Product).filter(Product.sku == c, Product.id != p.id).first():
            raise Conflict("Product SKU already exists", errors={"sku": "already exists"})
        p.sku = c

    # Images are replaced, the old files removed
    if main_image is not None and main_image.filename:
        new_url = save_image(main_image, upload_dir)
        remove_image(p.main_image_url, upload_dir)
        p.main_image_url = new_url
    new_subs = _save_sub_images(sub_images, upload_dir)
    if new_subs is not None:
        for url in p.sub_image_urls or []:
            remove_image(url, upload_dir)
        p.sub_image_urls = new_subs

    if description is not None: p.description = strip_tags(description)
    if price is not None: p.price = price
    if discount_price is not None: p.discount_price = discount_price
    if stock is not None: p.stock = stock
    if category_id is not None: p.category_id = category_id
    if subcategory_id is not None: p.subcategory_id = subcategory_id
    if brand is not None: p.brand = strip_tags(brand)
    if tags is not None: p.tags = _split_tags(tags)
    if is_featured is not None: p.is_featured = is_featured
    if status is not None: p.status = status

    db.commit()
    db.refresh(p)

    write_log(
        db, user_id=current_user.id, action="PRODUCT_UPDATE", resource="products",
        ip=client_ip(request), meta={"id": p.id},
    )
    return p


# =========================
# DELETE
# =========================
@router.delete("/products/{product_id}")
def delete_product(
    product_id: int, request: Request, db: Session = Depends(get_db), current_user: User = Depends(admin_required),
):
    upload_dir = request.app.state.settings.UPLOAD_DIR
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFound("Product not found")
    pid, ptitle = product.id, product.title

    cart_ids = [cid for (cid,) in db.query(CartItem.cart_id).filter(CartItem.product_id == pid).distinct()]

    # Orders keep their snapshot; live references go away with the product
    db.query(CartItem).filter(CartItem.product_id == pid).delete(synchronize_session=False)
    db.query(WishlistItem).filter(WishlistItem.product_id == pid).delete(synchronize_session=False)
    db.query(Review).filter(Review.product_id == pid).delete(synchronize_session=False)
    db.query(OrderItem).filter(OrderItem.product_id == pid).update(
        {OrderItem.product_id: None}, synchronize_session=False
    )
    for cart in db.query(Cart).filter(Cart.id.in_(cart_ids)).all():
        apply_cart_totals(cart)

    remove_image(product.main_image_url, upload_dir)
    for url in product.sub_image_urls or []:
        remove_image(url, upload_dir)
    db.delete(product)
    db.commit()

    write_log(
        db, user_id=current_user.id, action="PRODUCT_DELETE", resource="products",
        ip=client_ip(request), meta={"id": pid},
    )
    return {"detail": f"Product '{ptitle}' deleted"}
