# backend/database.py
from datetime import datetime, timezone

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def normalize_url(url: str) -> str:
    # Hosted Postgres often hands out postgres://, SQLAlchemy requires postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def make_engine(url: str):
    url = normalize_url(url)
    if "sqlite" not in url:
        return create_engine(url, pool_pre_ping=True)

    # SQLite connections are shared between request threads
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # Keep a single connection so the in-memory database survives
        kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine):
    # Register every model on Base.metadata before creating tables
    import models.users  # noqa: F401
    import models.category  # noqa: F401
    import models.product  # noqa: F401
    import models.coupon  # noqa: F401
    import models.cart  # noqa: F401
    import models.order  # noqa: F401
    import models.review  # noqa: F401
    import models.log  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
