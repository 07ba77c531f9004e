# backend/routes/categories.py
import json
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, UploadFile, File, Form
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from database import get_db
from models.category import Category, SubCategory
from models.product import Product
from models.users import User
from schemas.category import (
    CategoryOut, CategoryList, CategoryUpdate, CategoryDetail, SubCategoryIn, SubCategoryOut
)
from utils.audit import write_log, client_ip
from utils.errors import NotFound, Conflict, ValidationFailed
from utils.text import strip_tags, slugify
from utils.tokenJWT import admin_required
from utils.uploads import save_image, remove_image

router = APIRouter(prefix="/categories", tags=["Categories"])

_subcategory_list = TypeAdapter(List[SubCategoryIn])


def _parse_subcategories(raw: Optional[str]) -> List[SubCategoryIn]:
    # Multipart forms carry the subcategory list as a JSON string
    if not raw:
        return []
    try:
        return _subcategory_list.validate_python(json.loads(raw))
    except (ValueError, ValidationError):
        raise ValidationFailed("Invalid subcategories", errors={"subcategories": "must be a JSON list"})


def _build_subcategories(items: List[SubCategoryIn]) -> List[SubCategory]:
    subs, seen = [], set()
    for it in items:
        name = strip_tags(it.name)
        slug = slugify(name)
        if not slug or slug in seen:
            raise ValidationFailed("Duplicate or empty subcategory name", errors={"subcategories": name})
        seen.add(slug)
        subs.append(SubCategory(
            name=name, slug=slug, description=strip_tags(it.description), is_active=it.is_active
        ))
    return subs


def _check_name_free(db: Session, name: str, exclude_id: Optional[int] = None) -> str:
    slug = slugify(name)
    if not slug:
        raise ValidationFailed("Category name is required", errors={"name": "required"})
    q = db.query(Category).filter((Category.name == name) | (Category.slug == slug))
    if exclude_id is not None:
        q = q.filter(Category.id != exclude_id)
    if q.first():
        raise Conflict("Category already exists", errors={"name": "already exists"})
    return slug


def _lookup(db: Session, id_or_slug: str) -> Category:
    q = db.query(Category)
    category = q.filter(Category.id == int(id_or_slug)).first() if id_or_slug.isdigit() else None
    if category is None:
        category = q.filter(Category.slug == id_or_slug).first()
    if not category:
        raise NotFound("Category not found")
    return category


@router.get("", response_model=CategoryList)
def list_categories(
    active_only: bool = Query(False),
    db: Session = Depends(get_db),
):
    q = db.query(Category)
    if active_only:
        q = q.filter(Category.is_active.is_(True))
    return {"categories": q.order_by(Category.name).all()}


@router.get("/{category_id}/subcategories", response_model=List[SubCategoryOut])
def list_subcategories(category_id: int, db: Session = Depends(get_db)):
    category = db.query(Category).filter(Category.id == category_id).first()
    if not category:
        raise NotFound("Category not found")
    return category.subcategories


# Category with its active products
@router.get("/{id_or_slug}", response_model=CategoryDetail)
def get_category(id_or_slug: str, db: Session = Depends(get_db)):
    category = _lookup(db, id_or_slug)
    products = (
        db.query(Product)
        .filter(Product.category_id == category.id, Product.status == "active")
        .order_by(Product.created_at.desc(), Product.id.desc())
        .all()
    )
    return {"category": category, "products": products}


@router.post("", response_model=CategoryOut, status_code=201)
def create_category(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
    image: Optional[UploadFile] = File(None),
    name: str = Form(...),
    description: Optional[str] = Form(None),
    is_active: bool = Form(True),
    seo_title: Optional[str] = Form(None),
    seo_description: Optional[str] = Form(None),
    seo_keywords: Optional[str] = Form(None),
    subcategories: Optional[str] = Form(None),
):
    name = strip_tags(name)
    slug = _check_name_free(db, name)
    if description and len(description) > 500:
        raise ValidationFailed("Description too long", errors={"description": "max 500 characters"})
    subs = _build_subcategories(_parse_subcategories(subcategories))

    image_url = save_image(image, request.app.state.settings.UPLOAD_DIR) if image and image.filename else None
    category = Category(
        name=name, slug=slug, description=strip_tags(description), image_url=image_url,
        is_active=is_active, seo_title=seo_title, seo_description=seo_description, seo_keywords=seo_keywords,
        subcategories=subs,
    )
    db.add(category)
    db.commit()
    db.refresh(category)

    write_log(
        db, user_id=current_user.id, action="CATEGORY_CREATE", resource="categories",
        ip=client_ip(request), meta={"id": category.id, "slug": category.slug},
    )
    return category


@router.put("/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    category = db.query(Category).filter(Category.id == category_id).first()
    if not category:
        raise NotFound("Category not found")

    if payload.name is not None:
        name = strip_tags(payload.name)
        category.slug = _check_name_free(db, name, exclude_id=category.id)
        category.name = name
    if payload.description is not None:
        category.description = strip_tags(payload.description)
    for field in ("is_active", "seo_title", "seo_description", "seo_keywords"):
        value = getattr(payload, field)
        if value is not None:
            setattr(category, field, value)

    if payload.subcategories is not None:
        subs = _build_subcategories(payload.subcategories)
        old_ids = [s.id for s in category.subcategories]
        if old_ids:
            db.query(Product).filter(Product.subcategory_id.in_(old_ids)).update(
                {Product.subcategory_id: None}, synchronize_session=False
            )
        # Old rows must be gone before slugs are reused
        category.subcategories.clear()
        db.flush()
        category.subcategories.extend(subs)

    db.commit()
    db.refresh(category)

    write_log(
        db, user_id=current_user.id, action="CATEGORY_UPDATE", resource="categories",
        ip=client_ip(request), meta={"id": category.id},
    )
    return category


@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    category = db.query(Category).filter(Category.id == category_id).first()
    if not category:
        raise NotFound("Category not found")
    if db.query(Product).filter(Product.category_id == category.id).first():
        raise Conflict("Category still has products")

    name = category.name
    remove_image(category.image_url, request.app.state.settings.UPLOAD_DIR)
    db.delete(category)
    db.commit()

    write_log(
        db, user_id=current_user.id, action="CATEGORY_DELETE", resource="categories",
        ip=client_ip(request), meta={"id": category_id},
    )
    return {"detail": f"Category '{name}' deleted"}
