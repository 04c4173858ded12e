"""
FastAPI entry point for the DeckSync admin API.

Run locally with ``python -m decksync.main`` or ``uvicorn decksync.main:app``.
"""
import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request

from decksync import __version__
from decksync.api import api_router
from decksync.core.config import settings
from decksync.core.logging import setup_logging
from decksync.db.session import engine

setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the effective sync configuration on startup, release the pool on shutdown."""
    logger.info(
        "Starting DeckSync API",
        version=__version__,
        debug=settings.api_debug,
        source_url=settings.limitless_base_url,
        admin_sync_enabled=bool(settings.sync_admin_token),
    )

    yield

    logger.info("Shutting down DeckSync API")
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="One Piece TCG tournament and decklist sync",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": __version__,
        "docs": "/docs",
    }


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag every log line of a request with its id and log the outcome."""
    structlog.contextvars.clear_contextvars()
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(request_id=request_id)
    started = time.perf_counter()

    response = await call_next(request)

    logger.info(
        "Request handled",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    response.headers["X-Request-ID"] = request_id
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "decksync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
    )
