# backend/routes/reviews.py
import math

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from database import get_db, utcnow
from models.product import Product
from models.review import Review
from models.users import User
from schemas.review import ReviewCreate, ReviewOut, ReviewPage
from utils.audit import write_log, client_ip
from utils.errors import NotFound, Conflict, Forbidden
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/reviews", tags=["Reviews"])


def _refresh_rating(db: Session, product_id: int) -> None:
    # Keep the denormalized rating on the product in step with its reviews
    avg, count = db.query(func.avg(Review.rating), func.count(Review.id)) \
        .filter(Review.product_id == product_id).one()
    product = db.query(Product).filter(Product.id == product_id).first()
    if product:
        product.rating_average = round(float(avg or 0), 2)
        product.rating_count = count or 0


@router.post("/{product_id}", response_model=ReviewOut, status_code=201)
def create_review(
    product_id: int,
    payload: ReviewCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFound("Product not found")

    exists = db.query(Review).filter(
        Review.product_id == product_id, Review.user_id == current_user.id
    ).first()
    if exists:
        raise Conflict("You have already reviewed this product")

    review = Review(
        product_id=product_id, user_id=current_user.id,
        rating=payload.rating, comment=payload.comment, created_at=utcnow(),
    )
    db.add(review)
    db.flush()
    _refresh_rating(db, product_id)
    db.commit()
    db.refresh(review)

    write_log(db, user_id=current_user.id, action="REVIEW_CREATE", resource="reviews",
              ip=client_ip(request), meta={"product_id": product_id, "rating": payload.rating})
    return review


@router.get("/{product_id}", response_model=ReviewPage)
def list_reviews(
    product_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    if not db.query(Product.id).filter(Product.id == product_id).first():
        raise NotFound("Product not found")

    q = db.query(Review).filter(Review.product_id == product_id)
    total = q.count()
    reviews = q.order_by(Review.created_at.desc(), Review.id.desc()) \
        .offset((page - 1) * limit).limit(limit).all()
    return {"reviews": reviews, "page": page, "pages": math.ceil(total / limit), "total": total}


@router.delete("/{review_id}")
def delete_review(
    review_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    review = db.query(Review).filter(Review.id == review_id).first()
    if not review:
        raise NotFound("Review not found")
    if review.user_id != current_user.id and not current_user.is_admin:
        raise Forbidden("Not authorized to delete this review")

    product_id = review.product_id
    db.delete(review)
    db.flush()
    _refresh_rating(db, product_id)
    db.commit()

    write_log(db, user_id=current_user.id, action="REVIEW_DELETE", resource="reviews",
              ip=client_ip(request), meta={"review_id": review_id, "product_id": product_id})
    return {"detail": "Review deleted"}
