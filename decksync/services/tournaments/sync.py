"""
Tournament sync orchestrator.

Drives one sync run against a tournament source:

- Tournament phase: walk the listing pages, parse them and upsert every
  tournament by its natural key.
- Deck phase: for each stored tournament, fetch its standings, fetch and parse
  every decklist, resolve the cards against the catalog and persist the deck
  with its full card set and, when the standing links one, its player.

Per-item problems are recorded on the SyncRunResult and the run moves on.
Only a FatalSyncError (catalog or storage unreachable) stops the run, which
then ends FAILED with whatever was already written.
"""
import asyncio
from datetime import datetime, timezone
from functools import partial
from typing import Awaitable, Callable, Iterable, Optional

import structlog

from decksync.core.config import settings
from decksync.core.locks import KeyedLock
from decksync.services.tournaments.errors import (
    FatalSyncError,
    NaturalKeyCollisionError,
    NetworkError,
    ParseError,
    ResolutionAmbiguous,
    ResolutionMiss,
    SyncError,
)
from decksync.services.tournaments.gateway import PersistenceGateway
from decksync.services.tournaments.limitless_client import LIMITLESS_SOURCE, LimitlessClient
from decksync.services.tournaments.parsers import (
    parse_decklist,
    parse_listing,
    parse_standings,
    player_identity,
)
from decksync.services.tournaments.resolver import CardResolver
from decksync.services.tournaments.types import (
    Ambiguous,
    CardMention,
    DeckFields,
    DeckKey,
    KnownTournament,
    PlayerKey,
    Resolved,
    RunState,
    StandingEntry,
    SyncRunResult,
    TournamentFields,
    TournamentKey,
    TournamentStub,
    is_other_event,
)

logger = structlog.get_logger()

Phase = Callable[[SyncRunResult], Awaitable[None]]

# Forward order of the in-progress states; terminal states are set directly
_STATE_ORDER = {
    RunState.PENDING: 0,
    RunState.FETCHING: 1,
    RunState.PARSING: 2,
    RunState.RESOLVING: 3,
    RunState.PERSISTING: 4,
}


class TournamentSyncOrchestrator:
    """
    Runs tournament and deck syncs for one source.

    Collaborators are passed in, so tests can swap the client, the gateway or
    the catalog behind the resolver. Use a fresh CardResolver (and so a fresh
    resolution cache) per run.
    """

    def __init__(
        self,
        client: LimitlessClient,
        gateway: PersistenceGateway,
        resolver: CardResolver,
        *,
        source: Optional[str] = None,
        max_workers: Optional[int] = None,
        page_cap: Optional[int] = None,
        run_timeout_seconds: Optional[float] = None,
    ):
        """
        Args:
            client: Source client fetching listing, tournament and decklist pages
            gateway: Persistence gateway
            resolver: Card resolver with a run-scoped cache
            source: Source slug stored on tournaments
            max_workers: Tournaments processed concurrently in the deck phase
            page_cap: Maximum listing pages per run
            run_timeout_seconds: Wall-clock budget of a run
        """
        self.client = client
        self.gateway = gateway
        self.resolver = resolver
        self.source = source or getattr(client, "source", LIMITLESS_SOURCE)
        self.max_workers = max_workers or settings.sync_max_workers
        self.page_cap = page_cap or settings.sync_page_cap
        self.run_timeout_seconds = (
            run_timeout_seconds if run_timeout_seconds is not None
            else settings.sync_run_timeout_seconds
        )

        self._workers = asyncio.Semaphore(self.max_workers)
        self._entity_locks = KeyedLock()
        self._cancelled = asyncio.Event()
        self._deadline: Optional[float] = None
        self._seen_tournaments: set[TournamentKey] = set()
        self._seen_decks: set[DeckKey] = set()
        self._failed_tournaments: set[TournamentKey] = set()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def run(
        self,
        sync_decks: bool = True,
        only_missing_decks: bool = False,
        tournament_limit: Optional[int] = None,
    ) -> SyncRunResult:
        """
        Run a full sync.

        Args:
            sync_decks: Also run the deck phase after the tournament phase
            only_missing_decks: Deck phase only visits tournaments without decks
            tournament_limit: Maximum tournaments visited by the deck phase,
                most recent first

        Returns:
            SyncRunResult. Never raises for per-item failures; a fatal failure
            is returned as state FAILED.
        """
        phases: list[Phase] = [self._tournament_phase]
        if sync_decks:
            phases.append(partial(
                self._deck_phase,
                only_missing_decks=only_missing_decks,
                tournament_limit=tournament_limit,
            ))
        return await self._execute(phases)

    async def sync_tournaments(self) -> SyncRunResult:
        """Run only the tournament phase."""
        return await self._execute([self._tournament_phase])

    async def sync_decks(
        self,
        only_missing_decks: bool = False,
        tournament_limit: Optional[int] = None,
    ) -> SyncRunResult:
        """Run only the deck phase over already stored tournaments."""
        return await self._execute([partial(
            self._deck_phase,
            only_missing_decks=only_missing_decks,
            tournament_limit=tournament_limit,
        )])

    def cancel(self) -> None:
        """
        Ask the running sync to stop.

        No new fetches are started; work already in flight finishes and the
        run returns a partial result marked incomplete.
        """
        if not self._cancelled.is_set():
            logger.info("Tournament sync cancellation requested", source=self.source)
        self._cancelled.set()

    # -------------------------------------------------------------------------
    # Run control
    # -------------------------------------------------------------------------

    async def _execute(self, phases: list[Phase]) -> SyncRunResult:
        result = SyncRunResult()
        self._cancelled.clear()
        self._seen_tournaments.clear()
        self._seen_decks.clear()
        self._failed_tournaments.clear()
        self._entity_locks = KeyedLock()
        self._deadline = asyncio.get_running_loop().time() + self.run_timeout_seconds

        logger.info(
            "Tournament sync started",
            source=self.source,
            max_workers=self.max_workers,
            page_cap=self.page_cap,
            timeout_seconds=self.run_timeout_seconds,
        )

        try:
            for phase in phases:
                if self._stop_requested(result):
                    break
                await phase(result)
        except FatalSyncError as e:
            self._record(result, e)
            result.state = RunState.FAILED
            logger.error(
                "Tournament sync failed",
                source=self.source,
                stage=e.stage.value,
                error=e.message,
            )
        else:
            result.state = RunState.COMPLETED
        finally:
            result.finished_at = datetime.now(timezone.utc)
            self._deadline = None

        logger.info(
            "Tournament sync finished",
            source=self.source,
            state=result.state.value,
            incomplete=result.incomplete,
            tournaments_created=result.tournaments_created,
            tournaments_updated=result.tournaments_updated,
            decks_created=result.decks_created,
            decks_updated=result.decks_updated,
            unresolved=len(result.unresolved_cards),
            ambiguous=len(result.ambiguous_cards),
            errors=len(result.errors),
            cache_entries=len(self.resolver.cache),
        )
        return result

    def _stop_requested(self, result: SyncRunResult) -> bool:
        """Whether new fetches must not start; marks the result incomplete."""
        if self._cancelled.is_set():
            reason = "cancelled"
        elif self._deadline is not None and asyncio.get_running_loop().time() >= self._deadline:
            reason = "timeout"
        else:
            return False

        if not result.incomplete:
            result.incomplete = True
            result.record_warning(f"Run stopped early ({reason}); results are partial")
        return True

    @staticmethod
    def _advance(result: SyncRunResult, state: RunState) -> None:
        """Move the run state forward; never back within a phase."""
        if _STATE_ORDER.get(state, 0) > _STATE_ORDER.get(result.state, 0):
            result.state = state

    def _record(self, result: SyncRunResult, error: SyncError) -> None:
        if error.source is None:
            error.source = self.source
        result.record_error(error)

    @staticmethod
    async def _drain(coroutines: Iterable[Awaitable[None]]) -> None:
        """
        Await every coroutine, then re-raise the first failure.

        Siblings keep running when one fails, so in-flight writes finish
        before a fatal error ends the run.
        """
        outcomes = await asyncio.gather(*coroutines, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    # -------------------------------------------------------------------------
    # Tournament phase
    # -------------------------------------------------------------------------

    async def _tournament_phase(self, result: SyncRunResult) -> None:
        result.state = RunState.FETCHING
        page = 1
        last_page = self.page_cap
        pages_read = 0

        while page <= last_page:
            if self._stop_requested(result):
                break

            try:
                document = await self.client.fetch_listing(page)
            except NetworkError as e:
                # Later pages cannot be reached reliably without this one
                self._record(result, e)
                break
            pages_read += 1

            self._advance(result, RunState.PARSING)
            listing = parse_listing(document, page)
            for error in listing.errors:
                self._record(result, error)

            if not listing.tournaments and not listing.errors:
                logger.debug("Empty listing page, stopping", page=page)
                break

            self._advance(result, RunState.PERSISTING)
            await self._drain(
                self._persist_tournament(result, stub) for stub in listing.tournaments
            )

            last_page = min(listing.max_pages, self.page_cap)
            page += 1

        if pages_read:
            await self._mark_source_synced(result)

        logger.info(
            "Tournament phase finished",
            source=self.source,
            pages=page - 1,
            created=result.tournaments_created,
            updated=result.tournaments_updated,
        )

    async def _persist_tournament(self, result: SyncRunResult, stub: TournamentStub) -> None:
        key = TournamentKey(source=self.source, external_id=stub.external_id)
        if key in self._seen_tournaments:
            result.record_warning(f"{key} is listed more than once; later listing ignored")
            return
        self._seen_tournaments.add(key)

        async with self._entity_locks(key):
            try:
                outcome = await self.gateway.upsert_tournament(key, TournamentFields.from_stub(stub))
            except FatalSyncError:
                raise
            except SyncError as e:
                self._record(result, e)
                self._failed_tournaments.add(key)
                return

        if outcome.created:
            result.tournaments_created += 1
        else:
            result.tournaments_updated += 1

    async def _mark_source_synced(self, result: SyncRunResult) -> None:
        try:
            await self.gateway.mark_source_synced(
                self.source,
                name=getattr(self.client, "source_name", self.source),
                base_url=getattr(self.client, "base_url", ""),
                synced_at=datetime.now(timezone.utc),
            )
        except FatalSyncError:
            raise
        except SyncError as e:
            self._record(result, e)

    # -------------------------------------------------------------------------
    # Deck phase
    # -------------------------------------------------------------------------

    async def _deck_phase(
        self,
        result: SyncRunResult,
        only_missing_decks: bool = False,
        tournament_limit: Optional[int] = None,
    ) -> None:
        result.state = RunState.FETCHING
        try:
            tournaments = await self.gateway.list_tournaments(
                self.source,
                only_missing_decks=only_missing_decks,
                limit=tournament_limit,
            )
        except FatalSyncError:
            raise
        except SyncError as e:
            self._record(result, e)
            return

        skipped = [t for t in tournaments if t.key in self._failed_tournaments]
        for tournament in skipped:
            result.record_warning(f"{tournament.key} failed to sync this run; its decks were skipped")
        tournaments = [t for t in tournaments if t.key not in self._failed_tournaments]

        logger.info(
            "Deck phase started",
            source=self.source,
            tournaments=len(tournaments),
            only_missing_decks=only_missing_decks,
        )
        await self._drain(
            self._sync_tournament_decks(result, tournament) for tournament in tournaments
        )

    async def _sync_tournament_decks(self, result: SyncRunResult, tournament: KnownTournament) -> None:
        async with self._workers:
            if self._stop_requested(result):
                return

            try:
                document = await self.client.fetch_tournament_detail(tournament.key.external_id)
            except NetworkError as e:
                self._record(result, e)
                return

            self._advance(result, RunState.PARSING)
            standings = parse_standings(document)
            if is_other_event(
                tournament.name, tournament.event_date, standings.event_name, standings.event_date
            ):
                self._record(result, NaturalKeyCollisionError(
                    f"Tournament page shows {standings.event_name!r} ({standings.event_date}), "
                    f"not the stored {tournament.name!r} ({tournament.event_date}); decks skipped",
                    key=str(tournament.key),
                ))
                return

            for error in standings.errors:
                error.key = f"{tournament.key} {error.key}"
                self._record(result, error)

            await self._drain(
                self._sync_deck(result, tournament, entry) for entry in standings.entries
            )

    async def _sync_deck(
        self,
        result: SyncRunResult,
        tournament: KnownTournament,
        entry: StandingEntry,
    ) -> None:
        identity = player_identity(entry)
        if identity is None:
            self._record(result, ParseError(
                f"Standing #{entry.placement} has no player identity",
                key=str(tournament.key),
            ))
            return

        key = DeckKey(tournament_ref=tournament.ref, external_player_id=identity)
        if key in self._seen_decks:
            self._record(result, ParseError(
                f"Standing #{entry.placement} repeats player {identity!r} of an earlier standing; "
                f"deck skipped",
                key=str(tournament.key),
            ))
            return
        self._seen_decks.add(key)

        if not entry.decklist_id and not entry.decklist_url:
            result.record_warning(
                f"{tournament.key}: {entry.player_name or identity} has no published decklist"
            )
            return

        if self._stop_requested(result):
            return

        try:
            document = await self.client.fetch_decklist(entry.decklist_id or identity, entry.decklist_url)
            deck = parse_decklist(document, entry)
        except FatalSyncError:
            raise
        except SyncError as e:
            self._record(result, e)
            return

        for error in deck.errors:
            self._record(result, error)
        for warning in deck.warnings:
            result.record_warning(warning)

        self._advance(result, RunState.RESOLVING)
        refs: dict[CardMention, Optional[int]] = {}
        mentions = list(deck.cards)
        if deck.leader is not None:
            mentions.append(deck.leader)
        for mention in mentions:
            if mention not in refs:
                refs[mention] = await self._resolve_card(result, mention, key)

        cards: dict[int, int] = {}
        for mention in deck.cards:
            card_ref = refs[mention]
            if card_ref is not None:
                cards[card_ref] = cards.get(card_ref, 0) + mention.quantity

        self._advance(result, RunState.PERSISTING)
        player_ref = await self._persist_player(result, entry)
        fields = DeckFields(
            player=deck.player,
            placement=deck.placement,
            leader_card_ref=refs.get(deck.leader) if deck.leader is not None else None,
            archetype=deck.archetype,
            decklist_url=deck.decklist_url,
            player_ref=player_ref,
        )

        async with self._entity_locks(key):
            try:
                outcome = await self.gateway.upsert_deck(key, fields)
            except FatalSyncError:
                raise
            except SyncError as e:
                self._record(result, e)
                return

            if outcome.created:
                result.decks_created += 1
            else:
                result.decks_updated += 1

            try:
                await self.gateway.replace_deck_cards(outcome.ref, cards)
            except FatalSyncError:
                raise
            except SyncError as e:
                self._record(result, e)

    async def _persist_player(self, result: SyncRunResult, entry: StandingEntry) -> Optional[int]:
        """Upsert the profile of a standing's player; None for players without one."""
        if not entry.player_id:
            return None

        key = PlayerKey(source=self.source, external_player_id=entry.player_id)
        async with self._entity_locks(key):
            try:
                outcome = await self.gateway.upsert_player(key, entry.player_name, entry.player_url)
            except FatalSyncError:
                raise
            except SyncError as e:
                self._record(result, e)
                return None
        return outcome.ref

    async def _resolve_card(
        self,
        result: SyncRunResult,
        mention: CardMention,
        deck_key: DeckKey,
    ) -> Optional[int]:
        """Resolve one card line; misses and ambiguities are recorded, not raised."""
        outcome = await self.resolver.resolve(mention)
        if isinstance(outcome, Resolved):
            return outcome.card_ref

        if isinstance(outcome, Ambiguous):
            result.add_ambiguous(mention.raw_name)
            codes = ", ".join(card.code for card in outcome.candidates)
            self._record(result, ResolutionAmbiguous(
                f"{mention.raw_name!r} matches several cards ({codes})",
                key=str(deck_key),
            ))
        else:
            result.add_unresolved(mention.raw_name)
            self._record(result, ResolutionMiss(
                f"No catalog card matches {mention.raw_name!r}",
                key=str(deck_key),
            ))
        return None
