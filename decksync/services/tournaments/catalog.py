"""
Read-only card catalog lookup used by the card resolver.
"""
import asyncio
import re
import unicodedata
from collections import defaultdict
from typing import Optional, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from decksync.models import Card
from decksync.services.tournaments.errors import CatalogUnavailableError
from decksync.services.tournaments.types import CardRef

logger = structlog.get_logger()

# Typographic variants the source uses interchangeably in card names
_PUNCTUATION_VARIANTS = str.maketrans({
    "‘": "'", "’": "'", "‛": "'", "`": "'", "´": "'",
    "“": '"', "”": '"',
    "‐": "-", "‑": "-", "‒": "-", "–": "-", "—": "-",
    "・": " ", "·": " ",
})


def normalize_card_name(name: str) -> str:
    """
    Normalize a card name for catalog matching.

    Case-folds, unifies quote and dash variants, turns remaining punctuation
    into spaces and collapses whitespace, so "Monkey.D.Luffy" and
    "monkey d  luffy" compare equal.
    """
    value = unicodedata.normalize("NFKC", name).translate(_PUNCTUATION_VARIANTS).casefold()
    value = re.sub(r"[^\w\s]|_", " ", value)
    return re.sub(r"\s+", " ", value).strip()


def matches_hint(card: CardRef, hint: str) -> bool:
    """Whether a set/region hint (card code, set code or region) fits a card."""
    hint = hint.strip().upper()
    return hint in {
        card.code.upper(),
        (card.set_code or "").upper(),
        (card.region or "").upper(),
    }


class CardCatalog(Protocol):
    """Read-only lookup of canonical cards. Must be safe for concurrent calls."""

    async def lookup_card(
        self,
        normalized_name: str,
        region_hint: Optional[str] = None,
    ) -> list[CardRef]:
        ...


class SqlAlchemyCardCatalog:
    """
    Card catalog backed by the ``cards`` table.

    Cards are loaded once per catalog instance and indexed by normalized
    name. Each card code maps to its base printing; an alternate art is only
    used when the catalog has no base printing for that code.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker
        self._index: Optional[dict[str, list[CardRef]]] = None
        self._load_lock = asyncio.Lock()

    async def _load_index(self) -> dict[str, list[CardRef]]:
        async with self._load_lock:
            if self._index is not None:
                return self._index

            try:
                async with self.session_maker() as session:
                    result = await session.execute(select(Card).order_by(Card.id))
                    cards = list(result.scalars())
            except (SQLAlchemyError, OSError) as e:
                logger.error("Card catalog unavailable", error=str(e))
                raise CatalogUnavailableError(f"Card catalog unavailable: {e}") from e

            printings: dict[tuple[str, str], list[Card]] = defaultdict(list)
            for card in cards:
                printings[(normalize_card_name(card.name), card.code)].append(card)

            index: dict[str, list[CardRef]] = defaultdict(list)
            for (name, _code), group in printings.items():
                chosen = [card for card in group if card.base_card_id is None] or group[:1]
                index[name].extend(
                    CardRef(
                        id=card.id,
                        name=card.name,
                        code=card.code,
                        set_code=card.set_code,
                        region=card.region,
                    )
                    for card in chosen
                )

            self._index = dict(index)
            logger.info("Card catalog loaded", cards=len(cards), names=len(self._index))
            return self._index

    async def lookup_card(
        self,
        normalized_name: str,
        region_hint: Optional[str] = None,
    ) -> list[CardRef]:
        """
        Look up cards by normalized name, optionally narrowed by a hint.

        Args:
            normalized_name: Output of normalize_card_name
            region_hint: Card code, set code or region to narrow by

        Returns:
            Matching cards, possibly empty

        Raises:
            CatalogUnavailableError: When the cards table cannot be read
        """
        index = await self._load_index()
        candidates = index.get(normalized_name, [])
        if region_hint:
            return [card for card in candidates if matches_hint(card, region_hint)]
        return list(candidates)
