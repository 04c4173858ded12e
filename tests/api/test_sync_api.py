"""
Tests for the admin tournament sync endpoint.
"""
from typing import Optional

import pytest
from httpx import AsyncClient

from decksync.api.routes.sync import get_sync_orchestrator
from decksync.core.config import settings
from decksync.main import app
from decksync.services.tournaments.errors import CatalogUnavailableError
from decksync.services.tournaments.resolver import CardResolver
from decksync.services.tournaments.types import CardRef

SYNC_URL = "/api/admin/tournaments/sync"


class UnavailableCatalog:
    async def lookup_card(self, normalized_name: str, region_hint: Optional[str] = None) -> list[CardRef]:
        raise CatalogUnavailableError("catalog database is down")


class TestSyncAuthorization:

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient):
        response = await client.post(SYNC_URL)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_token(self, client: AsyncClient):
        response = await client.post(SYNC_URL, headers={"X-Admin-Token": "nope"})
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_disabled_without_configured_token(self, client: AsyncClient, admin_headers, monkeypatch):
        monkeypatch.setattr(settings, "sync_admin_token", "")

        response = await client.post(SYNC_URL, headers=admin_headers)

        assert response.status_code == 503
        assert response.json()["detail"] == "Admin endpoints are disabled"


class TestSyncRun:

    @pytest.mark.asyncio
    async def test_run_returns_summary(self, client, admin_headers, eight_player_event, catalog_cards):
        eight_player_event.decklists["5003"]["cards"].append(("OP99-999", "Gum-Gum Mystery", 2))

        response = await client.post(SYNC_URL, headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "completed"
        assert data["incomplete"] is False
        assert data["tournaments_created"] == 1
        assert data["decks_created"] == 8
        assert data["unresolved_cards"] == ["Gum-Gum Mystery"]
        assert len(data["errors"]) == 1
        assert data["started_at"]
        assert data["finished_at"]

    @pytest.mark.asyncio
    async def test_run_options(self, client, admin_headers, eight_player_event, catalog_cards):
        response = await client.post(SYNC_URL, headers=admin_headers, json={"sync_decks": False})

        assert response.status_code == 200
        assert response.json()["tournaments_created"] == 1
        assert response.json()["decks_created"] == 0

    @pytest.mark.asyncio
    async def test_invalid_options(self, client, admin_headers):
        response = await client.post(SYNC_URL, headers=admin_headers, json={"tournament_limit": 0})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_fatal_failure_returns_503_with_partial_summary(
        self, client, admin_headers, eight_player_event, make_orchestrator
    ):
        orchestrator = make_orchestrator(resolver=CardResolver(UnavailableCatalog()))
        app.dependency_overrides[get_sync_orchestrator] = lambda: orchestrator

        response = await client.post(SYNC_URL, headers=admin_headers)

        assert response.status_code == 503
        data = response.json()
        assert data["state"] == "failed"
        assert data["tournaments_created"] == 1
        assert data["errors"][-1] == "[resolve] limitless: catalog database is down"


class TestHealth:

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"]["database"] == "ok"
        assert data["catalog_cards"] == 0
        assert data["latest_tournament"] is None

    @pytest.mark.asyncio
    async def test_root_endpoint(self, client: AsyncClient):
        response = await client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "DeckSync"
        assert "version" in data

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client: AsyncClient):
        response = await client.get("/", headers={"X-Request-ID": "sync-check-1"})
        assert response.headers["X-Request-ID"] == "sync-check-1"

        generated = await client.get("/")
        assert generated.headers["X-Request-ID"]
