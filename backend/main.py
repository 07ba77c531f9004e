# backend/main.py
import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from config import Settings, get_settings, env_path
from database import make_engine, make_session_factory, init_db
from utils.errors import AppError
from utils.mailer import SMTPMailer
from utils.stripe_client import StripeClient

load_dotenv(env_path)

from routes.auth import router as auth_router
from routes.admin import router as admin_router
from routes.logs import router as logs_router
from routes.cart import router as cart_router
from routes.coupons import router as coupons_router
from routes.orders import router as orders_router, user_router as user_orders_router
from routes.payments import router as payments_router
from routes.tracking import router as tracking_router
from routes.categories import router as categories_router
from routes.products import router as products_router
from routes.reviews import router as reviews_router
from routes.wishlist import router as wishlist_router
from routes.reports import router as reports_router

logger = logging.getLogger(__name__)


def _error_body(message: str, errors=None) -> dict:
    body = {"detail": message}
    if errors:
        body["errors"] = errors
    return body


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.errors))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    # Field path (without the body/query prefix) -> first reason
    errors = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
        errors.setdefault(".".join(loc) or "request", err.get("msg", "invalid"))
    return JSONResponse(status_code=422, content=_error_body("Validation failed", errors))


def create_app(settings: Settings = None, session_factory=None, payment_gateway=None, mailer=None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if session_factory is None:
        engine = make_engine(settings.DATABASE_URL)
        init_db(engine)
        session_factory = make_session_factory(engine)

    app = FastAPI(title="Storefront API", version="1.0.0")
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.payment_gateway = payment_gateway or StripeClient.from_settings(settings)
    app.state.mailer = mailer or SMTPMailer.from_settings(settings)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Uploads - make sure the directory exists
    Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

    origins = ["http://localhost:5173", "http://127.0.0.1:5173"]
    if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
        origins.append(settings.FRONTEND_URL)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(logs_router)
    app.include_router(cart_router)
    app.include_router(coupons_router)
    app.include_router(orders_router)
    app.include_router(user_orders_router)
    app.include_router(payments_router)
    app.include_router(tracking_router)
    app.include_router(categories_router)
    app.include_router(products_router)
    app.include_router(reviews_router)
    app.include_router(wishlist_router)
    app.include_router(reports_router)

    @app.get("/")
    def read_root():
        return {"message": "Storefront API is running"}

    return app


app = create_app()
