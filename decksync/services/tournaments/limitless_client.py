"""
Limitless TCG client for fetching One Piece tournament pages.

Limitless publishes completed tournaments as paginated HTML listings. Each
tournament page holds the standings table, and each standing links to a
decklist page. The client only fetches; parsing lives in ``parsers``.

Politeness: at most ``max_concurrency`` requests in flight and at least
``rate_limit_seconds`` between two request starts.
"""
import asyncio
import time
from typing import Optional
from urllib.parse import urljoin

import httpx
import structlog

from decksync.core.config import settings
from decksync.services.tournaments.errors import NetworkError
from decksync.services.tournaments.types import RawDocument

logger = structlog.get_logger()

LIMITLESS_SOURCE = "limitless"

# Status codes worth retrying; every other 4xx is terminal for that fetch
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})
MAX_BACKOFF_SECONDS = 60.0


class LimitlessClient:
    """
    Client for Limitless TCG tournament pages.

    Handles headers, rate limiting, bounded retries with exponential backoff
    and error classification. Usable as an async context manager.
    """

    source = LIMITLESS_SOURCE
    source_name = "Limitless TCG"

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        max_retries: Optional[int] = None,
        backoff_factor: Optional[float] = None,
        rate_limit_seconds: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        page_size: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the Limitless client.

        Args:
            base_url: Site root. Defaults to settings.limitless_base_url.
            max_retries: Total attempts per fetch for transient failures.
            backoff_factor: Base of the exponential backoff, in seconds.
            rate_limit_seconds: Minimum delay between two request starts.
            max_concurrency: Maximum requests in flight.
            page_size: Rows requested per listing page.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = (base_url or settings.limitless_base_url).rstrip("/")
        self.max_retries = max(1, max_retries if max_retries is not None else settings.scraper_max_retries)
        self.backoff_factor = (
            backoff_factor if backoff_factor is not None else settings.scraper_backoff_factor
        )
        self.rate_limit_seconds = (
            rate_limit_seconds if rate_limit_seconds is not None
            else settings.scraper_rate_limit_seconds
        )
        self.page_size = page_size or settings.sync_page_size
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._concurrent_limit = asyncio.Semaphore(
            max_concurrency or settings.scraper_max_concurrency
        )
        self._rate_lock = asyncio.Lock()
        self._last_request_at: Optional[float] = None

    def tournament_url(self, external_id: str) -> str:
        return f"{self.base_url}/tournaments/{external_id}"

    def decklist_url(self, list_id: str) -> str:
        return f"{self.base_url}/decks/list/{list_id}"

    def absolute_url(self, href: Optional[str]) -> Optional[str]:
        if not href:
            return None
        return urljoin(self.base_url + "/", href)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {
                "User-Agent": settings.scraper_user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
            }
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(float(settings.external_api_timeout)),
                headers=headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def _rate_limit(self) -> None:
        """Enforce the minimum delay between request starts."""
        async with self._rate_lock:
            now = time.monotonic()
            if self._last_request_at is not None:
                elapsed = now - self._last_request_at
                if elapsed < self.rate_limit_seconds:
                    await asyncio.sleep(self.rate_limit_seconds - elapsed)
            self._last_request_at = time.monotonic()

    def _backoff_seconds(self, attempt: int, response: Optional[httpx.Response] = None) -> float:
        """Delay before the next attempt; honours Retry-After on 429."""
        wait_seconds = self.backoff_factor ** attempt
        if response is not None and response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    wait_seconds = float(retry_after)
                except ValueError:
                    pass
        return min(wait_seconds, MAX_BACKOFF_SECONDS)

    async def _fetch(
        self,
        url: str,
        *,
        key: str,
        params: Optional[dict] = None,
    ) -> RawDocument:
        """
        Fetch a page with bounded retries.

        Args:
            url: Absolute URL to fetch
            key: Natural key of the entity being fetched, for error context
            params: Optional query parameters

        Returns:
            RawDocument with the response body

        Raises:
            NetworkError: After exhausting retries on transient failures, or
                immediately on a non-transient failure (4xx, invalid URL)
        """
        last_error: Optional[NetworkError] = None

        for attempt in range(1, self.max_retries + 1):
            response: Optional[httpx.Response] = None
            async with self._concurrent_limit:
                await self._rate_limit()
                client = await self._get_client()
                try:
                    response = await client.get(url, params=params)
                except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
                    raise NetworkError(
                        f"Invalid URL {url}: {e}", transient=False, source=self.source, key=key
                    ) from e
                except httpx.TimeoutException as e:
                    last_error = NetworkError(
                        f"Request timeout: {e}", source=self.source, key=key
                    )
                except httpx.TransportError as e:
                    last_error = NetworkError(
                        f"Network error: {e}", source=self.source, key=key
                    )

            if response is not None:
                if response.status_code < 400:
                    return RawDocument(
                        url=str(response.url),
                        text=response.text,
                        status_code=response.status_code,
                    )

                if response.status_code not in TRANSIENT_STATUS_CODES:
                    logger.error(
                        "Limitless request rejected",
                        url=url,
                        status_code=response.status_code,
                    )
                    raise NetworkError(
                        f"HTTP {response.status_code} for {url}",
                        transient=False,
                        status_code=response.status_code,
                        source=self.source,
                        key=key,
                    )

                last_error = NetworkError(
                    f"HTTP {response.status_code} for {url}",
                    status_code=response.status_code,
                    source=self.source,
                    key=key,
                )

            if attempt < self.max_retries:
                wait_seconds = self._backoff_seconds(attempt, response)
                logger.warning(
                    "Limitless request failed, retrying",
                    url=url,
                    attempt=attempt,
                    max_retries=self.max_retries,
                    wait_seconds=wait_seconds,
                    error=last_error.message if last_error else None,
                )
                await asyncio.sleep(wait_seconds)

        logger.error(
            "Limitless request failed, max retries reached",
            url=url,
            attempts=self.max_retries,
            error=last_error.message if last_error else None,
        )
        raise NetworkError(
            f"Gave up after {self.max_retries} attempts: "
            f"{last_error.message if last_error else 'unknown error'}",
            status_code=last_error.status_code if last_error else None,
            source=self.source,
            key=key,
        )

    async def fetch_listing(self, page: int) -> RawDocument:
        """
        Fetch one page of the completed tournaments listing.

        Args:
            page: 1-based page number

        Returns:
            RawDocument for the listing page
        """
        document = await self._fetch(
            f"{self.base_url}/tournaments",
            key=f"listing page {page}",
            params={"page": page, "show": self.page_size},
        )
        logger.debug("Fetched tournament listing", page=page)
        return document

    async def fetch_tournament_detail(self, external_id: str) -> RawDocument:
        """
        Fetch a tournament page with its standings table.

        Args:
            external_id: Limitless tournament ID
        """
        document = await self._fetch(
            self.tournament_url(external_id), key=f"tournament {external_id}"
        )
        logger.debug("Fetched tournament detail", external_id=external_id)
        return document

    async def fetch_decklist(self, list_id: str, url: Optional[str] = None) -> RawDocument:
        """
        Fetch a single decklist page.

        Args:
            list_id: Limitless decklist ID
            url: Link taken from the standings table, if any
        """
        document = await self._fetch(url or self.decklist_url(list_id), key=f"decklist {list_id}")
        logger.debug("Fetched decklist", list_id=list_id)
        return document

    async def close(self) -> None:
        """Close HTTP client and cleanup resources."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "LimitlessClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
