"""
Shared fixtures: an app wired to in-memory SQLite, a fake card gateway and a
mailer that records instead of sending.
"""

import hashlib
import hmac
import json
import os
import tempfile
import time

# main builds a module-level app on import; keep it off the real database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="storefront-uploads-"))

import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import make_engine, make_session_factory, init_db
from main import create_app
from models.category import Category, SubCategory
from models.product import Product
from models.users import User
from utils.errors import PaymentFailed
from utils.hashing import get_password_hash
from utils.stripe_client import PaymentIntent
from utils.tokenJWT import create_access_token

WEBHOOK_SECRET = "whsec_test_secret"
PASSWORD = "Passw0rdOk"


class FakeGateway:
    """In-memory stand-in for StripeClient."""

    def __init__(self):
        self.intents = {}
        self.created = []
        self.retrieved = []
        self.fail_create = False

    async def create_payment_intent(self, amount_minor, currency, metadata):
        if self.fail_create:
            raise PaymentFailed("Payment processing failed: card declined")
        intent_id = f"pi_test_{len(self.intents) + 1}"
        intent = PaymentIntent(
            id=intent_id,
            status="requires_payment_method",
            client_secret=f"{intent_id}_secret",
            amount=amount_minor,
            currency=currency,
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        self.created.append(intent)
        return intent

    async def retrieve_payment_intent(self, intent_id):
        self.retrieved.append(intent_id)
        if intent_id not in self.intents:
            raise PaymentFailed("Payment processing failed: No such payment_intent")
        return self.intents[intent_id]

    def succeed(self, intent_id, receipt_email="payer@example.com"):
        intent = self.intents[intent_id]
        intent.status = "succeeded"
        intent.receipt_email = receipt_email
        return intent


class RecordingMailer:
    def __init__(self):
        self.outbox = []

    async def send(self, to, subject, html):
        self.outbox.append({"to": to, "subject": subject, "html": html})


@pytest.fixture
def settings(tmp_path):
    return Settings(
        SECRET_KEY="test-secret",
        DATABASE_URL="sqlite://",
        STRIPE_SECRET_KEY="sk_test",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        UPLOAD_DIR=str(tmp_path / "uploads"),
        RESERVATION_TTL_MINUTES=30,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def app(settings, session_factory, gateway, mailer):
    return create_app(settings, session_factory=session_factory, payment_gateway=gateway, mailer=mailer)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


# ============================================================================
# Data helpers
# ============================================================================


@pytest.fixture
def make_user(db):
    def _make(email="shopper@example.com", name="Shopper", role="customer", password=PASSWORD):
        user = User(name=name, email=email, password_hash=get_password_hash(password), role=role)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", name="Admin", role="admin")


@pytest.fixture
def auth_headers(settings):
    def _headers(u):
        token = create_access_token({"sub": str(u.id), "role": u.role}, settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def category(db):
    cat = Category(
        name="Fitness Equipment",
        slug="fitness-equipment",
        subcategories=[SubCategory(name="Dumbbells", slug="dumbbells")],
    )
    db.add(cat)
    db.commit()
    db.refresh(cat)
    return cat


@pytest.fixture
def make_product(db, category):
    counter = {"n": 0}

    def _make(title=None, price=20.0, discount_price=0, stock=10, status="active"):
        counter["n"] += 1
        n = counter["n"]
        title = title or f"Product {n}"
        product = Product(
            title=title,
            slug=f"product-{n}",
            sku=f"SKU-{n:03d}",
            description=f"{title} description",
            price=price,
            discount_price=discount_price,
            stock=stock,
            category_id=category.id,
            subcategory_id=category.subcategories[0].id,
            status=status,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def shipping():
    return {
        "full_name": "Jane Doe",
        "phone": "+1 555 0100",
        "street": "1 Main St",
        "city": "Springfield",
        "state": "IL",
        "postal_code": "62701",
        "country": "US",
    }


def sign_webhook(payload: dict, secret: str = WEBHOOK_SECRET, timestamp: int = None):
    """Returns (body, Stripe-Signature header) for a webhook delivery."""
    body = json.dumps(payload).encode("utf-8")
    ts = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + body, hashlib.sha256).hexdigest()
    return body, f"t={ts},v1={signature}"
