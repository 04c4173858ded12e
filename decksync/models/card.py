"""
Card model for the One Piece card catalog.

The catalog is maintained elsewhere; the tournament pipeline only reads it.
"""
from typing import Optional

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from decksync.db.base import Base


class Card(Base):
    """
    Represents a catalog card printing.

    A card is identified by its printed code (e.g. OP01-016). The same code can
    exist in several regions (EN/JP) and as alternate arts.
    """

    __tablename__ = "cards"

    code: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    set_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True, index=True)
    region: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)

    # Alternate arts point at their base printing
    base_card_id: Mapped[Optional[int]] = mapped_column(nullable=True)

    __table_args__ = (
        Index("ix_cards_code_region", "code", "region"),
    )

    def __repr__(self) -> str:
        return f"<Card {self.code} {self.name}>"
