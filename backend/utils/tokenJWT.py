# utils/tokenJWT.py
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from config import Settings
from database import get_db
from models.users import User, RevokedToken
from utils.errors import Unauthorized, Forbidden

# Authorization scheme; missing headers are reported as 401 by get_current_user
bearer_scheme = HTTPBearer(auto_error=False)


# Generate a new JWT access token with a unique id (used for logout)
def create_access_token(data: dict, settings: Settings, expires_delta: timedelta = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid or expired token")


# Retrieve the currently authenticated user based on the JWT token
def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Access denied. No token provided.")

    payload = decode_token(credentials.credentials, request.app.state.settings)
    subject = payload.get("sub")
    jti = payload.get("jti")
    # Ensure the subject is present in the token payload
    if subject is None or jti is None:
        raise Unauthorized("Bad token structure")

    if db.query(RevokedToken).filter(RevokedToken.jti == jti).first():
        raise Unauthorized("Token has been revoked")

    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise Unauthorized("Bad token structure")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise Unauthorized()
    return user


# Dependency factory for Role-Based Access Control
def role_required(*allowed_roles):
    allowed = {r.lower() for r in allowed_roles}

    def _checker(current_user: User = Depends(get_current_user)) -> User:
        if allowed and (current_user.role or "").lower() not in allowed:
            raise Forbidden("Admin access required" if allowed == {"admin"} else "Forbidden")
        return current_user

    return _checker


admin_required = role_required("admin")
