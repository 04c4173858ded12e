"""
Transaction scopes for the sync writers.

Each gateway call runs inside exactly one of these scopes, so a tournament,
a deck or a deck's card set is either fully written or not at all.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = structlog.get_logger()


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Commit the session when the block exits cleanly, roll it back otherwise.

    Usage:
        async with atomic(session):
            session.add(deck)
            await session.flush()
            session.add_all(cards)

    The original exception is re-raised after the rollback.
    """
    try:
        yield session
    except Exception as e:
        await session.rollback()
        logger.warning("Sync transaction rolled back", error=repr(e))
        raise
    await session.commit()


@asynccontextmanager
async def atomic_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session of its own and run it as one atomic scope."""
    async with session_maker() as session, atomic(session):
        yield session
