"""
Admin endpoint that triggers a tournament sync run.
"""
from collections.abc import AsyncGenerator
from typing import Annotated, Optional

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from decksync.api.deps import AdminToken
from decksync.db.session import get_session_maker
from decksync.schemas.sync import SyncRunRequest, SyncRunResponse
from decksync.services.tournaments import (
    CardResolver,
    LimitlessClient,
    RunState,
    SqlAlchemyCardCatalog,
    SqlAlchemyPersistenceGateway,
    TournamentSyncOrchestrator,
)

router = APIRouter()
logger = structlog.get_logger()


async def get_limitless_client() -> AsyncGenerator[LimitlessClient, None]:
    """Dependency providing a Limitless client, closed after the request."""
    async with LimitlessClient() as client:
        yield client


def get_sync_orchestrator(
    client: Annotated[LimitlessClient, Depends(get_limitless_client)],
    session_maker: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_maker)],
) -> TournamentSyncOrchestrator:
    """Build an orchestrator with a fresh resolver cache for one run."""
    return TournamentSyncOrchestrator(
        client=client,
        gateway=SqlAlchemyPersistenceGateway(session_maker),
        resolver=CardResolver(SqlAlchemyCardCatalog(session_maker)),
    )


@router.post(
    "/sync",
    response_model=SyncRunResponse,
    responses={503: {"model": SyncRunResponse, "description": "Catalog or storage unavailable"}},
)
async def run_tournament_sync(
    _: AdminToken,
    orchestrator: Annotated[TournamentSyncOrchestrator, Depends(get_sync_orchestrator)],
    options: Optional[SyncRunRequest] = None,
):
    """
    Run a tournament sync and return its summary.

    A run that completed with per-item errors still returns 200; inspect
    ``errors``. A run aborted because the catalog or storage is unreachable
    returns 503 with the partial summary.
    """
    options = options or SyncRunRequest()
    logger.info(
        "Manual tournament sync requested",
        sync_decks=options.sync_decks,
        only_missing_decks=options.only_missing_decks,
        tournament_limit=options.tournament_limit,
    )

    result = await orchestrator.run(
        sync_decks=options.sync_decks,
        only_missing_decks=options.only_missing_decks,
        tournament_limit=options.tournament_limit,
    )
    response = SyncRunResponse.model_validate(result)

    if result.state == RunState.FAILED:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response
