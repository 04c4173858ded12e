"""
Tournament sync schemas.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from decksync.services.tournaments.types import RunState


class SyncRunRequest(BaseModel):
    """Options for a manually triggered sync run."""
    sync_decks: bool = True
    only_missing_decks: bool = False
    tournament_limit: Optional[int] = Field(default=None, ge=1)


class SyncRunResponse(BaseModel):
    """Summary of a sync run."""
    tournaments_created: int
    tournaments_updated: int
    decks_created: int
    decks_updated: int
    unresolved_cards: list[str] = []
    ambiguous_cards: list[str] = []
    warnings: list[str] = []
    errors: list[str] = []
    state: RunState
    incomplete: bool = False
    started_at: datetime
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True
