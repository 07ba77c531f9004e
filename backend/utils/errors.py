# backend/utils/errors.py
from typing import Dict, Optional


class AppError(Exception):
    """Base for errors that map onto an HTTP response.

    Raised from services and routes, translated to
    ``{"detail": message, "errors": {...}}`` by the handler in ``main``.
    """

    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[Dict[str, str]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationFailed(AppError):
    status_code = 400
    default_message = "Validation failed"


class Unauthorized(AppError):
    status_code = 401
    default_message = "Could not validate credentials"


class Forbidden(Unauthorized):
    status_code = 403
    default_message = "Forbidden"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class Conflict(AppError):
    status_code = 409
    default_message = "Already exists"


class InsufficientStock(AppError):
    status_code = 400
    default_message = "Insufficient stock"

    def __init__(self, product_title: str, available: int):
        self.product_title = product_title
        self.available = available
        super().__init__(f"Insufficient stock for {product_title}. Available: {available}")


class PaymentFailed(AppError):
    status_code = 402
    default_message = "Payment processing failed"


class ServerError(AppError):
    status_code = 500
    default_message = "Server error"
