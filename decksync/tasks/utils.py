"""
Helpers for running the async sync pipeline inside Celery tasks.
"""
import asyncio
from typing import Any, Coroutine

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from decksync.core.config import settings

# Server-side limits for worker connections (milliseconds)
WORKER_STATEMENT_TIMEOUT_MS = 60_000
WORKER_IDLE_IN_TRANSACTION_MS = 300_000


def create_task_session_maker() -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """
    Build an engine bound to the task's own event loop.

    asyncpg connections cannot cross event loops, and every task gets a fresh
    loop from run_async, so the API module's engine is never reused here.

    Returns:
        (session_maker, engine). Dispose the engine when the task is done.
    """
    url = settings.database_url_computed
    connect_args: dict[str, Any] = {}
    if url.startswith("postgresql+asyncpg"):
        connect_args = {
            "server_settings": {
                "statement_timeout": str(WORKER_STATEMENT_TIMEOUT_MS),
                "idle_in_transaction_session_timeout": str(WORKER_IDLE_IN_TRANSACTION_MS),
                "application_name": "decksync_worker",
            },
            "command_timeout": WORKER_STATEMENT_TIMEOUT_MS // 1000,
        }

    # One write slot per gateway call, plus headroom for catalog reads
    pool_size = settings.sync_max_concurrent_writes + settings.sync_max_workers
    engine = create_async_engine(
        url,
        pool_pre_ping=True,
        pool_size=pool_size,
        max_overflow=pool_size,
        connect_args=connect_args,
    )
    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return session_maker, engine


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)
