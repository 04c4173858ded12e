"""
API module for FastAPI routes.
"""
from fastapi import APIRouter

from decksync.api.routes import health, sync

api_router = APIRouter()

api_router.include_router(health.router, tags=["Health"])
api_router.include_router(sync.router, prefix="/admin/tournaments", tags=["Admin"])
