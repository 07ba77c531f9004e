import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from utils.text import strip_tags


def check_password_strength(password: str) -> str:
    problems = []
    if len(password) < 8:
        problems.append("at least 8 characters")
    if not re.search(r"[A-Z]", password):
        problems.append("an uppercase letter")
    if not re.search(r"[a-z]", password):
        problems.append("a lowercase letter")
    if not re.search(r"\d", password):
        problems.append("a digit")
    if problems:
        raise ValueError("Password must contain " + ", ".join(problems))
    return password


# Shared properties for user models
class UserBase(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.strip().lower()


# Schema for user authentication credentials
class UserLogin(UserBase):
    password: str = Field(min_length=1)


# Schema for user registration requests
class UserCreate(UserBase):
    name: str = Field(min_length=1, max_length=100)
    password: str

    @field_validator("name")
    @classmethod
    def _clean_name(cls, v: str) -> str:
        cleaned = strip_tags(v)
        if not cleaned:
            raise ValueError("Name is required")
        return cleaned

    @field_validator("password")
    @classmethod
    def _strong_password(cls, v: str) -> str:
        return check_password_strength(v)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    password: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _clean_name(cls, v: Optional[str]) -> Optional[str]:
        return strip_tags(v) if v is not None else None

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v is not None else None

    @field_validator("password")
    @classmethod
    def _strong_password(cls, v: Optional[str]) -> Optional[str]:
        return check_password_strength(v) if v is not None else None


# Output schema for user profile details
class UserResponse(UserBase):
    id: int
    name: str
    role: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Schema for JWT authentication token response
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# Password reset flow
class ForgotPasswordRequest(UserBase):
    pass


class OtpVerifyRequest(UserBase):
    otp: str = Field(pattern=r"^\d{6}$")


class ResetPasswordRequest(OtpVerifyRequest):
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _strong_password(cls, v: str) -> str:
        return check_password_strength(v)


class MessageResponse(BaseModel):
    message: str


# Schema for administrative role updates
class RoleUpdate(BaseModel):
    role: str = Field(pattern=r"^(customer|admin)$")
