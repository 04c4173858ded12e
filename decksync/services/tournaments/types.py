"""
Value types passed between the stages of the tournament sync pipeline.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

import structlog

from decksync.models.tournament import TournamentType
from decksync.services.tournaments.errors import ParseError, SyncError

logger = structlog.get_logger()


@dataclass(frozen=True)
class RawDocument:
    """A fetched page, unparsed."""
    url: str
    text: str
    status_code: int = 200
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# -----------------------------------------------------------------------------
# Parser output
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class TournamentStub:
    """A tournament as listed on the source's listing page."""
    external_id: str
    name: str
    date: date
    location: str = ""
    format: Optional[str] = None
    player_count: Optional[int] = None
    url: Optional[str] = None
    tournament_type: Optional[TournamentType] = None
    region: Optional[str] = None
    country: Optional[str] = None
    player_count_approx: bool = False
    winner_name: Optional[str] = None
    winner_url: Optional[str] = None


@dataclass(frozen=True)
class ListingPage:
    """Parsed listing page: valid stubs in page order plus per-row errors."""
    tournaments: tuple[TournamentStub, ...]
    errors: tuple[ParseError, ...]
    max_pages: int


@dataclass(frozen=True)
class StandingEntry:
    """One row of a tournament's standings table."""
    placement: Optional[int]
    player_name: str
    player_url: Optional[str] = None
    player_id: Optional[str] = None
    archetype: Optional[str] = None
    decklist_id: Optional[str] = None
    decklist_url: Optional[str] = None


@dataclass(frozen=True)
class StandingsPage:
    """Standings of a tournament page, with the event name and date it shows."""
    entries: tuple[StandingEntry, ...]
    errors: tuple[ParseError, ...]
    event_name: Optional[str] = None
    event_date: Optional[date] = None


@dataclass(frozen=True)
class CardMention:
    """A card line as written by the source, not yet matched to the catalog."""
    raw_name: str
    raw_set_hint: Optional[str]
    quantity: int


@dataclass(frozen=True)
class ParsedDeck:
    """Everything the decklist parser extracted for one player's deck."""
    player: str
    external_player_id: str
    placement: Optional[int]
    leader: Optional[CardMention]
    cards: tuple[CardMention, ...]
    archetype: Optional[str] = None
    decklist_url: Optional[str] = None
    errors: tuple[ParseError, ...] = ()
    warnings: tuple[str, ...] = ()


# -----------------------------------------------------------------------------
# Resolution
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class CardRef:
    """A catalog card as returned by the catalog lookup."""
    id: int
    name: str
    code: str
    set_code: Optional[str] = None
    region: Optional[str] = None


@dataclass(frozen=True)
class Resolved:
    card: CardRef

    @property
    def card_ref(self) -> int:
        return self.card.id


@dataclass(frozen=True)
class Unresolved:
    raw_name: str


@dataclass(frozen=True)
class Ambiguous:
    raw_name: str
    candidates: tuple[CardRef, ...]


ResolutionResult = Union[Resolved, Unresolved, Ambiguous]


# -----------------------------------------------------------------------------
# Persistence
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class TournamentKey:
    source: str
    external_id: str

    def __str__(self) -> str:
        return f"tournament {self.external_id}"


@dataclass(frozen=True)
class DeckKey:
    tournament_ref: int
    external_player_id: str

    def __str__(self) -> str:
        return f"deck {self.tournament_ref}/{self.external_player_id}"


@dataclass(frozen=True)
class PlayerKey:
    source: str
    external_player_id: str

    def __str__(self) -> str:
        return f"player {self.external_player_id}"


def is_other_event(
    stored_name: str,
    stored_date: Optional[date],
    name: Optional[str],
    event_date: Optional[date],
) -> bool:
    """
    Whether an incoming name and date describe a different event than the
    stored ones.

    Only a change of both counts; a rename or a rescheduled date alone is the
    same event. Unknown incoming values never count as a change.
    """
    if not name or event_date is None or stored_date is None:
        return False
    return name != stored_name and event_date != stored_date


@dataclass(frozen=True)
class TournamentFields:
    """Mutable tournament fields written on every sync."""
    name: str
    date: date
    location: str = ""
    format: Optional[str] = None
    player_count: Optional[int] = None
    url: Optional[str] = None
    tournament_type: Optional[TournamentType] = None
    region: Optional[str] = None
    country: Optional[str] = None
    player_count_approx: bool = False
    winner_name: Optional[str] = None
    winner_url: Optional[str] = None

    @classmethod
    def from_stub(cls, stub: TournamentStub) -> "TournamentFields":
        return cls(
            name=stub.name,
            date=stub.date,
            location=stub.location,
            format=stub.format,
            player_count=stub.player_count,
            url=stub.url,
            tournament_type=stub.tournament_type,
            region=stub.region,
            country=stub.country,
            player_count_approx=stub.player_count_approx,
            winner_name=stub.winner_name,
            winner_url=stub.winner_url,
        )


@dataclass(frozen=True)
class DeckFields:
    """Mutable deck fields written on every sync."""
    player: str
    placement: Optional[int]
    leader_card_ref: Optional[int]
    archetype: Optional[str] = None
    decklist_url: Optional[str] = None
    player_ref: Optional[int] = None


@dataclass(frozen=True)
class KnownTournament:
    """A stored tournament, as listed back by the gateway for the deck phase."""
    ref: int
    key: TournamentKey
    name: str
    url: Optional[str] = None
    event_date: Optional[date] = None


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of a gateway write."""
    ref: int
    created: bool
    changed: bool = True


# -----------------------------------------------------------------------------
# Run summary
# -----------------------------------------------------------------------------

class RunState(str, Enum):
    """Lifecycle of a sync run."""
    PENDING = "pending"
    FETCHING = "fetching"
    PARSING = "parsing"
    RESOLVING = "resolving"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SyncRunResult:
    """
    Summary of one sync run.

    Rebuilt for every run and returned to the caller; never persisted. A
    non-empty ``errors`` list means the run completed in a degraded way.
    """
    tournaments_created: int = 0
    tournaments_updated: int = 0
    decks_created: int = 0
    decks_updated: int = 0
    unresolved_cards: list[str] = field(default_factory=list)
    ambiguous_cards: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    state: RunState = RunState.PENDING
    incomplete: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def record_error(self, error: SyncError) -> None:
        message = error.describe()
        logger.warning(
            "Sync item failed",
            stage=error.stage.value,
            source=error.source,
            key=error.key,
            error=error.message,
        )
        self.errors.append(message)

    def record_warning(self, message: str) -> None:
        logger.info("Sync warning", warning=message)
        self.warnings.append(message)

    def add_unresolved(self, raw_name: str) -> None:
        if raw_name not in self.unresolved_cards:
            self.unresolved_cards.append(raw_name)

    def add_ambiguous(self, raw_name: str) -> None:
        if raw_name not in self.ambiguous_cards:
            self.ambiguous_cards.append(raw_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tournaments_created": self.tournaments_created,
            "tournaments_updated": self.tournaments_updated,
            "decks_created": self.decks_created,
            "decks_updated": self.decks_updated,
            "unresolved_cards": list(self.unresolved_cards),
            "ambiguous_cards": list(self.ambiguous_cards),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "state": self.state.value,
            "incomplete": self.incomplete,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
