"""
Scheduled tournament sync tasks.

Runs the Limitless tournament and decklist sync from Celery beat.
"""
from typing import Any, Optional

import structlog
from celery import shared_task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from decksync.services.tournaments import (
    CardResolver,
    LimitlessClient,
    RunState,
    SqlAlchemyCardCatalog,
    SqlAlchemyPersistenceGateway,
    TournamentSyncOrchestrator,
)
from decksync.tasks.utils import create_task_session_maker, run_async

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=3, default_retry_delay=300, name="decksync.tasks.tournaments.sync_limitless")
def sync_limitless(
    self,
    sync_decks: bool = True,
    only_missing_decks: bool = False,
    tournament_limit: Optional[int] = None,
) -> dict[str, Any]:
    """
    Sync tournaments and decklists from Limitless TCG.

    Per-item failures are part of the returned summary. A run that failed
    because the catalog or database was unreachable is retried.

    Returns:
        The run summary as a dictionary
    """
    summary = run_async(_sync_limitless_async(
        sync_decks=sync_decks,
        only_missing_decks=only_missing_decks,
        tournament_limit=tournament_limit,
    ))

    if summary["state"] == RunState.FAILED.value:
        logger.warning(
            "Scheduled tournament sync failed, retrying",
            retries=self.request.retries,
            errors=summary["errors"][-1:],
        )
        raise self.retry()

    return summary


async def _sync_limitless_async(
    sync_decks: bool = True,
    only_missing_decks: bool = False,
    tournament_limit: Optional[int] = None,
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    client: Optional[LimitlessClient] = None,
) -> dict[str, Any]:
    """
    Async implementation of the scheduled sync.

    Creates its own engine unless a session maker is passed in.
    """
    engine = None
    if session_maker is None:
        session_maker, engine = create_task_session_maker()

    owns_client = client is None
    if client is None:
        client = LimitlessClient()

    try:
        orchestrator = TournamentSyncOrchestrator(
            client=client,
            gateway=SqlAlchemyPersistenceGateway(session_maker),
            resolver=CardResolver(SqlAlchemyCardCatalog(session_maker)),
        )
        result = await orchestrator.run(
            sync_decks=sync_decks,
            only_missing_decks=only_missing_decks,
            tournament_limit=tournament_limit,
        )
        return result.to_dict()

    finally:
        if owns_client:
            await client.close()
        # Dispose engine to free resources
        if engine is not None:
            await engine.dispose()
