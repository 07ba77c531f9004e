# backend/routes/logs.py
from datetime import datetime, time
from typing import List, Optional, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from database import get_db
from models.log import Log
from models.users import User
from utils.tokenJWT import admin_required

router = APIRouter(prefix="/logs", tags=["Logs"])


class LogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    action: str
    resource: str
    status: str
    ip: Optional[str] = None
    ts: datetime
    meta: Optional[Any] = None


class LogPage(BaseModel):
    items: List[LogResponse]
    total: int
    page: int
    page_size: int


@router.get("", response_model=LogPage)
def get_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    action: Optional[str] = Query(None, description="Filter by action"),
    user_id: Optional[int] = Query(None, description="Filter by user id"),
    resource: Optional[str] = Query(None, description="Filter by resource"),
    status: Optional[str] = Query(None, description="Filter by status (SUCCESS/FAIL)"),
    date_from: Optional[datetime] = Query(None, description="From date (YYYY-MM-DD)"),
    date_to: Optional[datetime] = Query(None, description="To date (YYYY-MM-DD)"),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    query = db.query(Log)

    if action:
        query = query.filter(Log.action.ilike(f"%{action}%"))

    if user_id is not None:
        query = query.filter(Log.user_id == user_id)

    if resource:
        query = query.filter(Log.resource.ilike(f"%{resource}%"))

    if status:
        query = query.filter(Log.status == status)

    if date_from:
        query = query.filter(Log.ts >= date_from)

    if date_to:
        # A bare date covers the whole day
        if date_to.time() == time(0, 0):
            date_to = datetime.combine(date_to.date(), time(23, 59, 59))
        query = query.filter(Log.ts <= date_to)

    query = query.order_by(Log.ts.desc(), Log.id.desc())

    total = query.count()
    logs = query.offset((page - 1) * page_size).limit(page_size).all()

    return {
        "items": logs,
        "total": total,
        "page": page,
        "page_size": page_size,
    }
