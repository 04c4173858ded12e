"""
Tournament sync services.

Fetches completed tournaments and their decklists from Limitless TCG, resolves
the listed cards against the catalog and stores the results idempotently.
"""
from decksync.services.tournaments.catalog import SqlAlchemyCardCatalog, normalize_card_name
from decksync.services.tournaments.errors import (
    FatalSyncError,
    NetworkError,
    ParseError,
    PersistenceError,
    SyncError,
)
from decksync.services.tournaments.gateway import SqlAlchemyPersistenceGateway
from decksync.services.tournaments.limitless_client import LimitlessClient
from decksync.services.tournaments.resolver import CardResolver, ResolutionCache
from decksync.services.tournaments.sync import TournamentSyncOrchestrator
from decksync.services.tournaments.types import RunState, SyncRunResult

__all__ = [
    "CardResolver",
    "FatalSyncError",
    "LimitlessClient",
    "NetworkError",
    "ParseError",
    "PersistenceError",
    "ResolutionCache",
    "RunState",
    "SqlAlchemyCardCatalog",
    "SqlAlchemyPersistenceGateway",
    "SyncError",
    "SyncRunResult",
    "TournamentSyncOrchestrator",
    "normalize_card_name",
]
