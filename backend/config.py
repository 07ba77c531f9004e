# backend/config.py
from functools import lru_cache
from pathlib import Path
from typing import ClassVar

from pydantic_settings import BaseSettings

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent / ".env"


class Settings(BaseSettings):
    # Auth tokens
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440

    DATABASE_URL: str = "sqlite:///./storefront.db"

    # Card payments (Stripe-compatible REST API)
    STRIPE_API_URL: str = "https://api.stripe.com"
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    CURRENCY: str = "usd"
    WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Unpaid gateway orders give their stock back after this window
    RESERVATION_TTL_MINUTES: int = 30

    # Outgoing mail (password reset codes)
    MAIL_HOST: str = "localhost"
    MAIL_PORT: int = 465
    MAIL_USERNAME: str = ""
    MAIL_PASSWORD: str = ""
    MAIL_FROM: str = "no-reply@storefront.local"
    MAIL_USE_TLS: bool = True
    OTP_EXPIRE_MINUTES: int = 10
    # Wrong guesses allowed before a reset code is discarded
    OTP_MAX_ATTEMPTS: int = 5

    UPLOAD_DIR: str = "static/uploads"
    FRONTEND_URL: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file: ClassVar[str] = str(env_path)
        extra: ClassVar[str] = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
