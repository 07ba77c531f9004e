# backend/routes/auth.py
import logging
import secrets
from datetime import datetime, timedelta, timezone

from aiosmtplib import SMTPException
from fastapi import APIRouter, Depends, status, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import func
from sqlalchemy.orm import Session

from database import get_db, utcnow
from models import users as models
from schemas import user as schemas
from utils.audit import write_log, client_ip
from utils.errors import Conflict, Unauthorized, ValidationFailed
from utils.hashing import get_password_hash, verify_password
from utils.mailer import get_mailer, reset_code_email
from utils.tokenJWT import bearer_scheme, create_access_token, decode_token, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])

# Same answers whether or not the account exists
RESET_SENT_MESSAGE = "If that email is registered, a reset code has been sent"
INVALID_OTP_MESSAGE = "Invalid or expired code"


def _aware(dt):
    # SQLite returns naive datetimes for timezone-aware columns
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _check_otp(db: Session, email: str, otp: str, max_attempts: int) -> models.User:
    db_user = db.query(models.User).filter(func.lower(models.User.email) == email).first()
    if (
        not db_user
        or not db_user.otp_hash
        or db_user.otp_expires_at is None
        or _aware(db_user.otp_expires_at) < utcnow()
    ):
        raise ValidationFailed(INVALID_OTP_MESSAGE, errors={"otp": "invalid or expired"})

    if not verify_password(otp, db_user.otp_hash):
        db.query(models.User).filter(models.User.id == db_user.id).update(
            {models.User.otp_attempts: models.User.otp_attempts + 1}, synchronize_session=False
        )
        db.refresh(db_user)
        if db_user.otp_attempts >= max_attempts:
            # Guessing budget spent; a new code has to be requested
            db_user.otp_hash = None
            db_user.otp_expires_at = None
            logger.warning("Reset code for user %s discarded after %s wrong attempts", db_user.id, max_attempts)
        db.commit()
        raise ValidationFailed(INVALID_OTP_MESSAGE, errors={"otp": "invalid or expired"})
    return db_user


# Register a new user
@router.post("/register", response_model=schemas.UserResponse, status_code=status.HTTP_201_CREATED)
def register(user: schemas.UserCreate, request: Request, db: Session = Depends(get_db)):
    # Check for existing user
    db_user = db.query(models.User).filter(func.lower(models.User.email) == user.email).first()
    if db_user:
        write_log(
            db,
            user_id=None,
            action="REGISTER",
            resource="auth",
            status="FAIL",
            ip=client_ip(request),
            meta={"email": user.email, "reason": "Email exists"},
        )
        raise Conflict("Email already registered", errors={"email": "already registered"})

    # Create new user instance with hashed password
    new_user = models.User(
        name=user.name, email=user.email, password_hash=get_password_hash(user.password), role="customer"
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    write_log(
        db,
        user_id=new_user.id,
        action="REGISTER",
        resource="auth",
        ip=client_ip(request),
        meta={"email": new_user.email},
    )
    return new_user


# Authenticate user and issue JWT token
@router.post("/login", response_model=schemas.Token)
def login(payload: schemas.UserLogin, request: Request, db: Session = Depends(get_db)):
    db_user = db.query(models.User).filter(func.lower(models.User.email) == payload.email).first()

    # Unknown email and wrong password share one response
    if not db_user or not verify_password(payload.password, db_user.password_hash):
        write_log(db, user_id=(db_user.id if db_user else None), action="LOGIN", resource="auth",
                  status="FAIL", ip=client_ip(request), meta={"email": payload.email})
        raise Unauthorized("Invalid credentials")

    settings = request.app.state.settings
    access_token = create_access_token({"sub": str(db_user.id), "role": db_user.role}, settings)

    write_log(db, user_id=db_user.id, action="LOGIN", resource="auth",
              ip=client_ip(request), meta={"email": db_user.email})
    return {"access_token": access_token, "token_type": "bearer", "user": db_user}


@router.post("/logout", response_model=schemas.MessageResponse)
def logout(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    payload = decode_token(credentials.credentials, request.app.state.settings)
    exp = payload.get("exp")
    db.add(models.RevokedToken(
        jti=payload["jti"],
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
    ))
    db.commit()

    write_log(db, user_id=current_user.id, action="LOGOUT", resource="auth", ip=client_ip(request))
    return {"message": "Logged out"}


# Start a password reset by mailing a one-time code
@router.post("/forgot-password", response_model=schemas.MessageResponse)
async def forgot_password(
    payload: schemas.ForgotPasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
    mailer=Depends(get_mailer),
):
    settings = request.app.state.settings
    db_user = db.query(models.User).filter(func.lower(models.User.email) == payload.email).first()
    if not db_user:
        write_log(db, user_id=None, action="PASSWORD_RESET_REQUEST", resource="auth",
                  status="FAIL", ip=client_ip(request), meta={"email": payload.email})
        return {"message": RESET_SENT_MESSAGE}

    otp = f"{secrets.randbelow(10 ** 6):06d}"
    db_user.otp_hash = get_password_hash(otp)
    db_user.otp_expires_at = utcnow() + timedelta(minutes=settings.OTP_EXPIRE_MINUTES)
    db_user.otp_attempts = 0
    db.commit()

    try:
        await mailer.send(
            db_user.email,
            "Your password reset code",
            reset_code_email(db_user.name, otp, settings.OTP_EXPIRE_MINUTES),
        )
    except SMTPException:
        # The reply stays the same so a mail outage does not reveal which accounts exist
        logger.exception("Could not send reset code to user %s", db_user.id)
        write_log(db, user_id=db_user.id, action="PASSWORD_RESET_REQUEST", resource="auth",
                  status="FAIL", ip=client_ip(request), meta={"email": db_user.email, "reason": "Mail delivery failed"})
        return {"message": RESET_SENT_MESSAGE}

    write_log(db, user_id=db_user.id, action="PASSWORD_RESET_REQUEST", resource="auth",
              ip=client_ip(request), meta={"email": db_user.email})
    return {"message": RESET_SENT_MESSAGE}


@router.post("/verify-otp", response_model=schemas.MessageResponse)
def verify_otp(payload: schemas.OtpVerifyRequest, request: Request, db: Session = Depends(get_db)):
    _check_otp(db, payload.email, payload.otp, request.app.state.settings.OTP_MAX_ATTEMPTS)
    return {"message": "Code verified"}


@router.post("/reset-password", response_model=schemas.MessageResponse)
def reset_password(payload: schemas.ResetPasswordRequest, request: Request, db: Session = Depends(get_db)):
    db_user = _check_otp(db, payload.email, payload.otp, request.app.state.settings.OTP_MAX_ATTEMPTS)
    db_user.password_hash = get_password_hash(payload.new_password)
    db_user.otp_hash = None
    db_user.otp_expires_at = None
    db_user.otp_attempts = 0
    db.commit()

    write_log(db, user_id=db_user.id, action="PASSWORD_RESET", resource="auth", ip=client_ip(request))
    return {"message": "Password has been reset"}


# Retrieve current authenticated user details
@router.get("/profile", response_model=schemas.UserResponse)
def get_profile(current_user: models.User = Depends(get_current_user)):
    return current_user


@router.put("/profile", response_model=schemas.UserResponse)
def update_profile(
    payload: schemas.UserUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    if payload.email and payload.email != current_user.email:
        taken = db.query(models.User).filter(
            func.lower(models.User.email) == payload.email, models.User.id != current_user.id
        ).first()
        if taken:
            raise Conflict("Email already registered", errors={"email": "already registered"})
        current_user.email = payload.email
    if payload.name:
        current_user.name = payload.name
    if payload.password:
        current_user.password_hash = get_password_hash(payload.password)

    db.commit()
    db.refresh(current_user)

    write_log(db, user_id=current_user.id, action="PROFILE_UPDATE", resource="auth",
              ip=client_ip(request), meta={"fields": sorted(payload.model_dump(exclude_none=True))})
    return current_user
