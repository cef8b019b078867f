"""Postgres access for the listed-token table.

Prices never touch the database, so an unreachable database only affects
``/api/global-prices/tokens`` and the health report.
"""

import logging
from collections.abc import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)

async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """Request-scoped session for the token routes."""
    async with async_session() as session:
        yield session


async def check_connection() -> bool:
    """Run ``SELECT 1``. Failures are logged and reported as False."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        return False
    return True
