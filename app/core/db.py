import logging
from contextlib import contextmanager

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from app.core.config import settings
from app.core.errors import TransientStoreError

logger = logging.getLogger(__name__)

_url = settings.async_database_url
# SQLite (local dev, tests): no pooling, each session gets its own connection
engine = create_async_engine(
    _url,
    pool_pre_ping=True,
    poolclass=NullPool if _url.startswith("sqlite") else None,
)

# expire_on_commit=False so rows returned from services stay readable after commit
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()

async def get_db():
    async with SessionLocal() as session:
        yield session

@contextmanager
def store_errors(action: str):
    """Surface connection-level failures as TransientStoreError. Integrity errors pass through."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        logger.error(f"[Store] {action} failed: {e}")
        raise TransientStoreError() from e

async def init_models():
    """Create tables directly from metadata. Used by local dev and tests; production runs Alembic."""
    # Import models so they register on Base.metadata
    from app.modules.cms import models as cms_models  # noqa: F401
    from app.modules.sales import models as sales_models  # noqa: F401
    from app.modules.admin import models as admin_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
