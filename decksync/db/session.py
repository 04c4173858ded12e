"""
Engine and session factory for the API process.

Celery tasks build their own engine per event loop, see
``decksync.tasks.utils.create_task_session_maker``.
"""
from collections.abc import AsyncGenerator

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from decksync.core.config import settings

logger = structlog.get_logger()

engine = create_async_engine(
    settings.database_url_computed,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
    pool_recycle=1800,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session, committed when the handler returns."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("Request session rolled back", error=str(e), error_type=type(e).__name__)
            raise


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """
    Session factory for the sync pipeline.

    Gateway and catalog calls each open a short session of their own, so the
    concurrent deck workers never share the request session.
    """
    return async_session_maker
