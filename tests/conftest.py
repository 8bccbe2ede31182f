"""Pytest fixtures: file-backed SQLite database, seeded catalog, tokens, test client."""
import os
import tempfile
import uuid
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt

# Must be set before app modules are imported: the engine is built at import time.
# File-backed (not :memory:) so concurrent sessions really use separate connections.
_DB_PATH = os.path.join(tempfile.gettempdir(), f"vod_entitlements_test_{uuid.uuid4().hex}.db")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_PATH}")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("PAYHERE_MERCHANT_ID", "1211149")
os.environ.setdefault("PAYHERE_MERCHANT_SECRET", "test-merchant-secret")
os.environ.setdefault("PAYHERE_NOTIFY_URL", "https://api.store.example.com/api/v1/sales/payments/notify")
os.environ.setdefault("FRONTEND_URL", "https://store.example.com/")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "10000")
os.environ.setdefault("RATE_LIMIT_CHECKOUT_PER_MINUTE", "10000")

from app.core.config import settings
from app.core.db import Base, SessionLocal, engine, init_models
from app.main import app
from app.modules.auth.schemas import Principal, UserRole
from app.modules.cms import models as cms_models
from app.modules.sales import payhere


@pytest.fixture(autouse=True)
async def _schema():
    """Fresh tables for every test."""
    await init_models()
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


def pytest_sessionfinish(session, exitstatus):
    if os.path.exists(_DB_PATH):
        os.remove(_DB_PATH)


@pytest.fixture
async def db():
    async with SessionLocal() as session:
        yield session


async def _add_content(title, content_type, price, season_prices=None):
    async with SessionLocal() as session:
        content = cms_models.Content(title=title, content_type=content_type, price=price)
        session.add(content)
        await session.flush()
        for season_number, season_price in (season_prices or {}).items():
            session.add(cms_models.SeasonPrice(content_id=content.id, season_number=season_number, price=season_price))
        await session.commit()
        return content.id


@pytest.fixture
async def movie():
    """Paid movie, price 500."""
    return await _add_content("Inception", cms_models.ContentType.MOVIE, Decimal("500.00"))


@pytest.fixture
async def free_movie():
    return await _add_content("Night of the Living Dead", cms_models.ContentType.MOVIE, Decimal("0"))


@pytest.fixture
async def unpriced_movie():
    """Price column left NULL."""
    return await _add_content("Nosferatu", cms_models.ContentType.MOVIE, None)


@pytest.fixture
async def series():
    """Series default 1000, season 2 overridden to 300."""
    return await _add_content("Dark", cms_models.ContentType.TV_SERIES, Decimal("1000.00"), {2: Decimal("300.00")})


@pytest.fixture
def user():
    return Principal(id=uuid.uuid4(), role=UserRole.USER, email="viewer@example.com", username="viewer")


@pytest.fixture
def other_user():
    return Principal(id=uuid.uuid4(), role=UserRole.USER, email="someone@example.com")


@pytest.fixture
def admin():
    return Principal(id=uuid.uuid4(), role=UserRole.ADMIN, email="admin@example.com")


def make_token(principal: Principal) -> str:
    claims = {"sub": str(principal.id), "role": principal.role.value}
    if principal.email:
        claims["email"] = principal.email
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth_headers_for(principal: Principal) -> dict:
    return {"Authorization": f"Bearer {make_token(principal)}"}


@pytest.fixture
def user_headers(user):
    return auth_headers_for(user)


@pytest.fixture
def admin_headers(admin):
    return auth_headers_for(admin)


@pytest.fixture
def gateway():
    return payhere.GatewayConfig.from_settings()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
