# backend/routes/admin.py
from typing import List, Optional, Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from database import get_db
from models.users import User
from models.order import Order, PaymentStatus
from models.product import Product
from schemas.user import RoleUpdate, UserResponse
from schemas.reports import AdminStats
from utils.audit import write_log, client_ip
from utils.errors import NotFound, ValidationFailed
from utils.tokenJWT import admin_required

router = APIRouter(tags=["Admin"])


# Schema for paginated user list response
class PaginatedUsersResponse(BaseModel):
    items: List[UserResponse]
    total: int
    page: int
    page_size: int


# Retrieve a list of users with filtering, sorting, and pagination (Admin only)
@router.get("/users", response_model=PaginatedUsersResponse)
def get_all_users(
    q: Optional[str] = Query(None, description="Search by email or name"),
    role: Optional[str] = Query(None, description="Filter by role"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    sort_by: Literal["id", "email", "name", "role", "created_at"] = "id",
    order: Literal["asc", "desc"] = "asc",
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    query = db.query(User)

    if q:
        like = f"%{q.lower()}%"
        query = query.filter(User.email.ilike(like) | User.name.ilike(like))

    if role:
        query = query.filter(User.role.ilike(role))

    sort_map = {
        "id": User.id,
        "email": User.email,
        "name": User.name,
        "role": User.role,
        "created_at": User.created_at,
    }
    col = sort_map.get(sort_by, User.id)
    query = query.order_by(col.asc() if order == "asc" else col.desc())

    total = query.count()
    users = query.offset((page - 1) * page_size).limit(page_size).all()

    return {
        "items": users,
        "total": total,
        "page": page,
        "page_size": page_size,
    }


# Update user role (Admin only)
@router.put("/users/{user_id}/role")
def update_user_role(
    user_id: int,
    new_role: RoleUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")

    old_role = user.role
    user.role = new_role.role
    db.commit()
    db.refresh(user)

    write_log(db, user_id=current_user.id, action="USER_ROLE_UPDATE", resource="users",
              ip=client_ip(request), meta={"target": user.id, "from": old_role, "to": user.role})
    return {"message": f"User {user.email} role updated to {user.role}", "id": user.id, "role": user.role}


# Delete a user account (Admin only)
@router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")

    # Prevent self-deletion
    if user.id == current_user.id:
        raise ValidationFailed("You cannot delete your own account")

    email = user.email
    db.delete(user)
    db.commit()

    write_log(db, user_id=current_user.id, action="USER_DELETE", resource="users",
              ip=client_ip(request), meta={"target": user_id, "email": email})
    return {"message": f"User {email} has been deleted"}


@router.get("/admin/stats", response_model=AdminStats)
def get_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    revenue = db.query(func.coalesce(func.sum(Order.grand_total), 0.0)) \
        .filter(Order.payment_status == PaymentStatus.PAID.value).scalar()
    return AdminStats(
        users=db.query(func.count(User.id)).scalar() or 0,
        orders=db.query(func.count(Order.id)).scalar() or 0,
        products=db.query(func.count(Product.id)).scalar() or 0,
        revenue=round(float(revenue or 0), 2),
    )
