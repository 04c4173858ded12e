"""
Health check endpoint.
"""
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from decksync.db.session import get_db
from decksync.models import Card, Tournament

router = APIRouter()
logger = structlog.get_logger()


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Report database reachability, catalog size and the newest synced event.

    With ``catalog_cards`` at 0 no card line can resolve.
    """
    catalog_cards = None
    latest_tournament = None
    try:
        catalog_cards = await db.scalar(select(func.count()).select_from(Card))
        latest_tournament = await db.scalar(select(func.max(Tournament.date)))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Health check: database query failed", error=str(e))

    db_ok = catalog_cards is not None
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "api": "ok",
            "database": "ok" if db_ok else "error",
        },
        "catalog_cards": catalog_cards,
        "latest_tournament": latest_tournament.isoformat() if latest_tournament else None,
    }
