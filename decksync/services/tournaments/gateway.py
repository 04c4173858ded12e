"""
Persistence gateway for tournaments, decks and deck cards.

Every call is one transaction addressed by a natural key. The orchestrator
relies on each call being atomic and does not wrap several calls together.
"""
import asyncio
import datetime
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Any, Mapping, Optional, Protocol

import structlog
from sqlalchemy import delete, exists, select
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from decksync.core.config import settings
from decksync.db.transaction import atomic_session
from decksync.models import Player, Tournament, TournamentDeck, TournamentDeckCard, TournamentSource
from decksync.services.tournaments.errors import (
    NaturalKeyCollisionError,
    PersistenceError,
    StorageUnavailableError,
)
from decksync.services.tournaments.types import (
    DeckFields,
    DeckKey,
    KnownTournament,
    PlayerKey,
    TournamentFields,
    TournamentKey,
    UpsertResult,
    is_other_event,
)

logger = structlog.get_logger()


class PersistenceGateway(Protocol):
    """Natural-key writes used by the sync orchestrator."""

    async def upsert_tournament(self, key: TournamentKey, fields: TournamentFields) -> UpsertResult:
        ...

    async def upsert_player(self, key: PlayerKey, name: str, url: Optional[str] = None) -> UpsertResult:
        ...

    async def upsert_deck(self, key: DeckKey, fields: DeckFields) -> UpsertResult:
        ...

    async def replace_deck_cards(self, deck_ref: int, cards: Mapping[int, int]) -> UpsertResult:
        ...

    async def list_tournaments(
        self,
        source: str,
        only_missing_decks: bool = False,
        limit: Optional[int] = None,
    ) -> list[KnownTournament]:
        ...

    async def mark_source_synced(
        self,
        source: str,
        name: str,
        base_url: str,
        synced_at: datetime.datetime,
    ) -> UpsertResult:
        ...


def _apply_changes(record: Any, values: Mapping[str, Any]) -> bool:
    """Set changed attributes on a record; return whether anything changed."""
    changed = False
    for attr, value in values.items():
        if getattr(record, attr) != value:
            setattr(record, attr, value)
            changed = True
    return changed


class SqlAlchemyPersistenceGateway:
    """
    PersistenceGateway over SQLAlchemy async sessions.

    Opens a short session per call. ``max_concurrent_writes`` caps how many
    calls hold a connection at once; use 1 for SQLite.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        max_concurrent_writes: Optional[int] = None,
    ):
        self.session_maker = session_maker
        self._write_slots = asyncio.Semaphore(
            max_concurrent_writes or settings.sync_max_concurrent_writes
        )

    @asynccontextmanager
    async def _transaction(self, key: str) -> AsyncGenerator[AsyncSession, None]:
        """One atomic session, with driver errors mapped to the sync taxonomy."""
        async with self._write_slots:
            try:
                async with atomic_session(self.session_maker) as session:
                    yield session
            except (OperationalError, InterfaceError, OSError) as e:
                raise StorageUnavailableError(f"Storage unavailable: {e}", key=key) from e
            except SQLAlchemyError as e:
                raise PersistenceError(f"Write failed: {e}", key=key) from e

    async def upsert_tournament(self, key: TournamentKey, fields: TournamentFields) -> UpsertResult:
        """
        Create or update a tournament by (source, external_id).

        Raises:
            NaturalKeyCollisionError: When the stored tournament has both a
                different name and a different date, which means the source
                reused the id for another event
        """
        values = {
            "name": fields.name,
            "date": fields.date,
            "location": fields.location,
            "format": fields.format,
            "player_count": fields.player_count,
            "url": fields.url,
            "tournament_type": fields.tournament_type,
            "region": fields.region,
            "country": fields.country,
            "player_count_approx": fields.player_count_approx,
            "winner_name": fields.winner_name,
            "winner_url": fields.winner_url,
        }

        async with self._transaction(str(key)) as session:
            existing = await session.scalar(
                select(Tournament).where(
                    Tournament.source == key.source,
                    Tournament.external_id == key.external_id,
                )
            )

            if existing is None:
                tournament = Tournament(source=key.source, external_id=key.external_id, **values)
                session.add(tournament)
                await session.flush()
                logger.debug("Tournament created", source=key.source, external_id=key.external_id)
                return UpsertResult(ref=tournament.id, created=True)

            if is_other_event(existing.name, existing.date, fields.name, fields.date):
                raise NaturalKeyCollisionError(
                    f"Stored tournament {existing.name!r} ({existing.date}) does not match "
                    f"incoming {fields.name!r} ({fields.date}); not merging",
                    source=key.source,
                    key=str(key),
                )

            changed = _apply_changes(existing, values)
            await session.flush()
            return UpsertResult(ref=existing.id, created=False, changed=changed)

    async def upsert_player(self, key: PlayerKey, name: str, url: Optional[str] = None) -> UpsertResult:
        """Create or update a player profile by (source, external_player_id)."""
        values = {"name": name, "url": url}

        async with self._transaction(str(key)) as session:
            existing = await session.scalar(
                select(Player).where(
                    Player.source == key.source,
                    Player.external_player_id == key.external_player_id,
                )
            )

            if existing is None:
                player = Player(source=key.source, external_player_id=key.external_player_id, **values)
                session.add(player)
                await session.flush()
                return UpsertResult(ref=player.id, created=True)

            changed = _apply_changes(existing, values)
            await session.flush()
            return UpsertResult(ref=existing.id, created=False, changed=changed)

    async def upsert_deck(self, key: DeckKey, fields: DeckFields) -> UpsertResult:
        """Create or update a deck by (tournament_ref, external_player_id)."""
        values = {
            "player_name": fields.player,
            "placement": fields.placement,
            "leader_card_id": fields.leader_card_ref,
            "archetype_name": fields.archetype,
            "decklist_url": fields.decklist_url,
            "player_id": fields.player_ref,
        }

        async with self._transaction(str(key)) as session:
            existing = await session.scalar(
                select(TournamentDeck).where(
                    TournamentDeck.tournament_id == key.tournament_ref,
                    TournamentDeck.external_player_id == key.external_player_id,
                )
            )

            if existing is None:
                deck = TournamentDeck(
                    tournament_id=key.tournament_ref,
                    external_player_id=key.external_player_id,
                    **values,
                )
                session.add(deck)
                await session.flush()
                return UpsertResult(ref=deck.id, created=True)

            changed = _apply_changes(existing, values)
            await session.flush()
            return UpsertResult(ref=existing.id, created=False, changed=changed)

    async def replace_deck_cards(self, deck_ref: int, cards: Mapping[int, int]) -> UpsertResult:
        """
        Replace the full card set of a deck.

        Args:
            deck_ref: Deck id
            cards: card id -> quantity

        Returns:
            UpsertResult with ``changed`` False when the stored set already
            matches, in which case nothing is written
        """
        async with self._transaction(f"deck {deck_ref} cards") as session:
            result = await session.execute(
                select(TournamentDeckCard.card_id, TournamentDeckCard.quantity)
                .where(TournamentDeckCard.deck_id == deck_ref)
            )
            current = {card_id: quantity for card_id, quantity in result.all()}

            if current == dict(cards):
                return UpsertResult(ref=deck_ref, created=False, changed=False)

            await session.execute(
                delete(TournamentDeckCard).where(TournamentDeckCard.deck_id == deck_ref)
            )
            session.add_all([
                TournamentDeckCard(deck_id=deck_ref, card_id=card_id, quantity=quantity)
                for card_id, quantity in cards.items()
            ])
            await session.flush()

            logger.debug(
                "Deck cards replaced",
                deck_id=deck_ref,
                previous=len(current),
                current=len(cards),
            )
            return UpsertResult(ref=deck_ref, created=not current, changed=True)

    async def list_tournaments(
        self,
        source: str,
        only_missing_decks: bool = False,
        limit: Optional[int] = None,
    ) -> list[KnownTournament]:
        """
        List stored tournaments of a source, most recent first.

        Args:
            source: Source slug
            only_missing_decks: Only tournaments without any stored deck
            limit: Maximum number of tournaments
        """
        query = select(Tournament).where(Tournament.source == source)
        if only_missing_decks:
            query = query.where(
                ~exists().where(TournamentDeck.tournament_id == Tournament.id)
            )
        query = query.order_by(Tournament.date.desc(), Tournament.id.desc())
        if limit is not None:
            query = query.limit(limit)

        async with self._transaction(f"{source} tournaments") as session:
            result = await session.execute(query)
            return [
                KnownTournament(
                    ref=t.id,
                    key=TournamentKey(source=t.source, external_id=t.external_id),
                    name=t.name,
                    url=t.url,
                    event_date=t.date,
                )
                for t in result.scalars()
            ]

    async def mark_source_synced(
        self,
        source: str,
        name: str,
        base_url: str,
        synced_at: datetime.datetime,
    ) -> UpsertResult:
        """Register a tournament source and stamp the time of its last sync."""
        async with self._transaction(f"source {source}") as session:
            existing = await session.scalar(
                select(TournamentSource).where(TournamentSource.slug == source)
            )

            if existing is None:
                record = TournamentSource(
                    slug=source,
                    name=name,
                    base_url=base_url,
                    last_synced_at=synced_at,
                )
                session.add(record)
                await session.flush()
                logger.info("Tournament source registered", source=source)
                return UpsertResult(ref=record.id, created=True)

            _apply_changes(existing, {"name": name, "base_url": base_url, "last_synced_at": synced_at})
            await session.flush()
            return UpsertResult(ref=existing.id, created=False)
