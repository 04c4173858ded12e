"""
Pytest configuration and fixtures.

Provides fixtures for:
- Database engine and session maker on a throwaway SQLite file
- Seeded catalog cards
- A fake Limitless site served through httpx.MockTransport
- Limitless client, orchestrator factory and HTTP client for the API
"""
import math
import re
from html import escape
from typing import AsyncGenerator, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from decksync.core.config import settings
from decksync.db.base import Base
from decksync.models import Card
from decksync.services.tournaments import (
    CardResolver,
    LimitlessClient,
    SqlAlchemyCardCatalog,
    SqlAlchemyPersistenceGateway,
    TournamentSyncOrchestrator,
)

LIMITLESS_TEST_URL = "https://limitless.test"
ADMIN_TOKEN = "test-admin-token"


@pytest.fixture(autouse=True)
def sync_settings(monkeypatch):
    """Settings suited to a single-writer SQLite database and no real network."""
    monkeypatch.setattr(settings, "sync_max_concurrent_writes", 1)
    monkeypatch.setattr(settings, "scraper_rate_limit_seconds", 0.0)
    monkeypatch.setattr(settings, "sync_run_timeout_seconds", 60.0)
    monkeypatch.setattr(settings, "limitless_base_url", LIMITLESS_TEST_URL)
    monkeypatch.setattr(settings, "sync_admin_token", ADMIN_TOKEN)


# -----------------------------------------------------------------------------
# Database Fixtures
# -----------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """
    Create test database engine.

    A file database with one connection per session, so concurrent sync
    workers never share a transaction.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'decksync.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def catalog_cards(session_maker) -> dict[str, Card]:
    """
    Seed the card catalog.

    Returns the English base printings keyed by card code. Besides those the
    catalog holds a Japanese printing of Monkey.D.Luffy and an alternate art
    of Nami, which the resolver must not pick.
    """
    english = [
        Card(code="OP01-001", name="Roronoa Zoro", set_code="OP01", region="EN"),
        Card(code="OP01-025", name="Roronoa Zoro", set_code="OP01", region="EN"),
        Card(code="OP01-016", name="Nami", set_code="OP01", region="EN"),
        Card(code="OP01-013", name="Sanji", set_code="OP01", region="EN"),
        Card(code="ST01-012", name="Monkey.D.Luffy", set_code="ST01", region="EN"),
        Card(code="OP02-001", name="Edward.Newgate", set_code="OP02", region="EN"),
        Card(code="OP02-004", name="Edward.Newgate", set_code="OP02", region="EN"),
    ]

    async with session_maker() as session:
        session.add_all(english)
        session.add(Card(code="ST01-012", name="Monkey.D.Luffy", set_code="ST01", region="JP"))
        await session.flush()

        nami = next(card for card in english if card.code == "OP01-016")
        session.add(Card(
            code="OP01-016",
            name="Nami",
            set_code="OP01",
            region="EN",
            base_card_id=nami.id,
        ))
        await session.commit()

    return {card.code: card for card in english}


# -----------------------------------------------------------------------------
# Fake Limitless site
# -----------------------------------------------------------------------------

# Default deck: one of each section, every card present in catalog_cards
DEFAULT_LEADER = ("OP01-001", "Roronoa Zoro")
DEFAULT_CARDS = [
    ("OP01-016", "Nami", 4),
    ("OP01-013", "Sanji", 3),
    ("ST01-012", "Monkey.D.Luffy", 4),
]


class FakeLimitlessSite:
    """
    In-memory Limitless site.

    Renders listing, tournament and decklist pages in the site's markup and
    serves them through ``handler``, which plugs into httpx.MockTransport.
    """

    def __init__(self, per_page: int = 50):
        self.per_page = per_page
        self.tournaments: list[dict] = []
        self.standings: dict[str, list[dict]] = {}
        self.decklists: dict[str, dict] = {}
        self.failures: dict[str, list[int]] = {}
        self.requests: list[httpx.Request] = []
        self.extra_listing_rows: list[str] = []

    # Data setup ---------------------------------------------------------------

    def add_tournament(
        self,
        external_id: str,
        name: str,
        date: str = "2024-05-04",
        players: int = 8,
        country: Optional[str] = "US",
        format: str = "OP07",
        region: Optional[str] = None,
        winner: Optional[tuple[str, str]] = None,
        approx: bool = False,
    ) -> dict:
        tournament = {
            "external_id": external_id,
            "name": name,
            "date": date,
            "players": players,
            "country": country,
            "format": format,
            "region": region,
            "winner": winner,
            "approx": approx,
        }
        self.tournaments.append(tournament)
        self.standings.setdefault(external_id, [])
        return tournament

    def add_deck(
        self,
        tournament_id: str,
        player_id: Optional[str],
        player_name: str,
        placement: int,
        list_id: Optional[str],
        cards: Optional[list[tuple[str, str, int]]] = None,
        leader: Optional[tuple[str, str]] = DEFAULT_LEADER,
        archetype: str = "Zoro",
    ) -> None:
        self.standings[tournament_id].append({
            "player_id": player_id,
            "player_name": player_name,
            "placement": placement,
            "list_id": list_id,
            "archetype": archetype,
        })
        if list_id is not None:
            self.decklists[list_id] = {
                "leader": leader,
                "cards": list(DEFAULT_CARDS if cards is None else cards),
            }

    def set_decklist(self, list_id: str, cards: list[tuple[str, str, int]]) -> None:
        self.decklists[list_id]["cards"] = list(cards)

    def fail(self, path: str, *status_codes: int) -> None:
        """Answer the next requests for ``path`` with the given status codes."""
        self.failures.setdefault(path, []).extend(status_codes)

    def requested_paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    # Rendering ----------------------------------------------------------------

    def max_pages(self) -> int:
        return max(1, math.ceil(len(self.tournaments) / self.per_page))

    def render_listing(self, page: int = 1) -> str:
        start = (page - 1) * self.per_page
        rows = []
        for t in self.tournaments[start:start + self.per_page]:
            place_attrs = "".join(
                f' data-{attr}="{t[attr]}"' for attr in ("country", "region") if t[attr]
            )
            players = f'{t["players"]}<span class="apc">*</span>' if t["approx"] else t["players"]
            winner = ""
            if t["winner"] is not None:
                winner_id, winner_name = t["winner"]
                winner = f'<a href="/players/{winner_id}">{escape(winner_name)}</a>'
            rows.append(
                f'<tr data-date="{t["date"]}" data-name="{escape(t["name"])}"{place_attrs} '
                f'data-format="{t["format"]}" data-players="{t["players"]}">'
                f'<td>{t["date"]}</td>'
                f'<td><a href="/tournaments/{t["external_id"]}">{escape(t["name"])}</a></td>'
                f'<td>{t["country"] or t["region"] or ""}</td><td>{t["format"]}</td><td>{players}</td>'
                f'<td class="winner">{winner}</td>'
                f'</tr>'
            )
        if page == 1:
            rows.extend(self.extra_listing_rows)
        return (
            "<html><body>"
            '<table class="completed-tournaments"><thead><tr><th>Date</th><th>Name</th></tr></thead>'
            f'<tbody>{"".join(rows)}</tbody></table>'
            f'<ul class="pagination" data-current="{page}" data-max="{self.max_pages()}"></ul>'
            "</body></html>"
        )

    def render_standings(self, tournament_id: str) -> str:
        rows = []
        for entry in self.standings[tournament_id]:
            player = (
                f'<a href="/players/{entry["player_id"]}">{escape(entry["player_name"])}</a>'
                if entry["player_id"] else escape(entry["player_name"])
            )
            decklist = (
                f'<a href="/decks/list/{entry["list_id"]}">List</a>' if entry["list_id"] else ""
            )
            rows.append(
                f'<tr><td>{entry["placement"]}</td><td>{player}</td>'
                f'<td><a class="deck-link" href="/decks/x">{escape(entry["archetype"])}</a></td>'
                f'<td>{decklist}</td></tr>'
            )
        tournament = next(
            t for t in reversed(self.tournaments) if t["external_id"] == tournament_id
        )
        return (
            "<html><body>"
            f'<div class="infobox" data-date="{tournament["date"]}">'
            f'<div class="infobox-heading">{escape(tournament["name"])}</div>'
            f'<div class="infobox-line">{tournament["date"]} • {tournament["players"]} Players</div>'
            "</div>"
            '<table class="tournament-results"><thead><tr><th>#</th><th>Player</th></tr></thead>'
            f'<tbody>{"".join(rows)}</tbody></table>'
            "</body></html>"
        )

    @staticmethod
    def _card_line(code: str, name: str, count: int) -> str:
        return (
            f'<div class="decklist-card" data-id="{code}" data-count="{count}">'
            f'<span class="card-count">{count}</span>'
            f'<span class="card-name">{escape(name)}</span></div>'
        )

    def render_decklist(self, list_id: str) -> str:
        deck = self.decklists[list_id]
        columns = []
        if deck["leader"] is not None:
            code, name = deck["leader"]
            columns.append(
                '<div class="decklist-column">'
                '<div class="decklist-column-heading">Leader (1)</div>'
                f"{self._card_line(code, name, 1)}</div>"
            )
        columns.append(
            '<div class="decklist-column">'
            '<div class="decklist-column-heading">Character (11)</div>'
            + "".join(self._card_line(code, name, count) for code, name, count in deck["cards"])
            + "</div>"
        )
        return f'<html><body><div class="decklist">{"".join(columns)}</div></body></html>'

    # Transport ----------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        queued = self.failures.get(path)
        if queued:
            return httpx.Response(queued.pop(0), text="unavailable")

        if path == "/tournaments":
            page = int(request.url.params.get("page", "1"))
            return httpx.Response(200, text=self.render_listing(page))

        match = re.fullmatch(r"/tournaments/([\w-]+)", path)
        if match and match.group(1) in self.standings:
            return httpx.Response(200, text=self.render_standings(match.group(1)))

        match = re.fullmatch(r"/decks/list/(\d+)", path)
        if match and match.group(1) in self.decklists:
            return httpx.Response(200, text=self.render_decklist(match.group(1)))

        return httpx.Response(404, text="not found")


@pytest.fixture
def eight_player_event(limitless_site) -> FakeLimitlessSite:
    """Tournament T1 with eight players, each with a published decklist."""
    limitless_site.add_tournament("T1", "Regional Championship", players=8)
    for placement in range(1, 9):
        limitless_site.add_deck(
            "T1",
            player_id=str(100 + placement),
            player_name=f"Player {placement}",
            placement=placement,
            list_id=str(5000 + placement),
        )
    return limitless_site


@pytest.fixture
def limitless_site() -> FakeLimitlessSite:
    return FakeLimitlessSite()


@pytest_asyncio.fixture
async def limitless_client(limitless_site) -> AsyncGenerator[LimitlessClient, None]:
    """Limitless client wired to the fake site, without backoff delays."""
    client = LimitlessClient(
        base_url=LIMITLESS_TEST_URL,
        max_retries=3,
        backoff_factor=0,
        rate_limit_seconds=0,
        max_concurrency=4,
        transport=httpx.MockTransport(limitless_site.handler),
    )
    yield client
    await client.close()


@pytest.fixture
def make_orchestrator(limitless_client, session_maker):
    """Factory for orchestrators sharing the fake site and test database."""

    def factory(**kwargs) -> TournamentSyncOrchestrator:
        options = {"max_workers": 2, "page_cap": 5, "run_timeout_seconds": 60}
        options.update(kwargs)
        return TournamentSyncOrchestrator(
            client=options.pop("client", limitless_client),
            gateway=options.pop(
                "gateway", SqlAlchemyPersistenceGateway(session_maker, max_concurrent_writes=1)
            ),
            resolver=options.pop(
                "resolver", CardResolver(SqlAlchemyCardCatalog(session_maker))
            ),
            **options,
        )

    return factory


# -----------------------------------------------------------------------------
# API Fixtures
# -----------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="function")
async def client(session_maker, limitless_client) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the FastAPI app, backed by the test database and fake site."""
    from decksync.api.routes.sync import get_limitless_client
    from decksync.db.session import get_db, get_session_maker
    from decksync.main import app

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_maker] = lambda: session_maker
    app.dependency_overrides[get_limitless_client] = lambda: limitless_client

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": ADMIN_TOKEN}
