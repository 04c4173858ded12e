"""
Card resolver: maps scraped card mentions to catalog cards.

Resolution order, first match wins:
1. normalized name + set/region hint
2. normalized name alone, when it yields a single card
3. the run-scoped cache of earlier resolutions of the same mention

The cache is checked before the catalog. It only holds outcomes of steps 1
and 2 for an identical mention.
"""
from typing import Awaitable, Callable, Optional

import structlog

from decksync.core.locks import KeyedLock
from decksync.services.tournaments.catalog import CardCatalog, normalize_card_name
from decksync.services.tournaments.types import (
    Ambiguous,
    CardMention,
    CardRef,
    Resolved,
    ResolutionResult,
    Unresolved,
)

logger = structlog.get_logger()

CacheKey = tuple[str, str]


class ResolutionCache:
    """
    Append-only, run-scoped memo of resolution results.

    Concurrent misses on the same key are single-flight: the first caller
    resolves while the others wait on the key's lock and then read the stored
    result. Entries are never overwritten.
    """

    def __init__(self) -> None:
        self._results: dict[CacheKey, ResolutionResult] = {}
        self._locks = KeyedLock()
        self.hits = 0
        self.misses = 0

    async def get_or_resolve(
        self,
        key: CacheKey,
        resolve: Callable[[], Awaitable[ResolutionResult]],
    ) -> ResolutionResult:
        cached = self._results.get(key)
        if cached is not None:
            self.hits += 1
            return cached

        async with self._locks(key):
            cached = self._results.get(key)
            if cached is not None:
                self.hits += 1
                return cached

            self.misses += 1
            result = await resolve()
            self._results.setdefault(key, result)
            return self._results[key]

    def __len__(self) -> int:
        return len(self._results)


class CardResolver:
    """
    Resolves CardMentions against a read-only catalog.

    Unresolved and ambiguous outcomes are returned, never raised; only
    CatalogUnavailableError escapes, and it aborts the run.
    """

    def __init__(
        self,
        catalog: CardCatalog,
        cache: Optional[ResolutionCache] = None,
        preferred_region: Optional[str] = "EN",
    ):
        """
        Args:
            catalog: Card catalog lookup
            cache: Run-scoped resolution cache; a fresh one when omitted
            preferred_region: Region that breaks ties between regional
                printings of the same card
        """
        self.catalog = catalog
        self.cache = cache if cache is not None else ResolutionCache()
        self.preferred_region = preferred_region

    @staticmethod
    def cache_key(mention: CardMention) -> CacheKey:
        return (normalize_card_name(mention.raw_name), (mention.raw_set_hint or "").strip().upper())

    def _pick(self, candidates: list[CardRef]) -> Optional[CardRef]:
        """Single candidate, or the only one printed in the preferred region."""
        if len(candidates) == 1:
            return candidates[0]
        if self.preferred_region:
            preferred = [c for c in candidates if (c.region or "").upper() == self.preferred_region.upper()]
            if len(preferred) == 1:
                return preferred[0]
        return None

    async def _resolve_uncached(self, mention: CardMention, normalized_name: str) -> ResolutionResult:
        if mention.raw_set_hint:
            hinted = await self.catalog.lookup_card(normalized_name, mention.raw_set_hint)
            card = self._pick(hinted)
            if card is not None:
                return Resolved(card)

        candidates = await self.catalog.lookup_card(normalized_name)
        if not candidates:
            logger.debug("Card not found in catalog", raw_name=mention.raw_name, hint=mention.raw_set_hint)
            return Unresolved(mention.raw_name)

        card = self._pick(candidates)
        if card is not None:
            return Resolved(card)

        logger.debug(
            "Card name is ambiguous",
            raw_name=mention.raw_name,
            hint=mention.raw_set_hint,
            candidates=len(candidates),
        )
        return Ambiguous(mention.raw_name, tuple(candidates))

    async def resolve(self, mention: CardMention) -> ResolutionResult:
        """
        Resolve a card mention.

        Args:
            mention: Card line as scraped

        Returns:
            Resolved, Unresolved or Ambiguous

        Raises:
            CatalogUnavailableError: When the catalog cannot be queried
        """
        key = self.cache_key(mention)
        normalized_name = key[0]
        if not normalized_name:
            return Unresolved(mention.raw_name)
        return await self.cache.get_or_resolve(
            key, lambda: self._resolve_uncached(mention, normalized_name)
        )
