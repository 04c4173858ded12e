"""
Tournament models for scraped tournament results.

Stores tournament sources, tournaments, the players and decks seen in them and
the deck contents. Every table is addressed by a natural key so that repeated
syncs update rows in place instead of duplicating them.
"""
import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from decksync.db.base import Base

if TYPE_CHECKING:
    from decksync.models.card import Card


class TournamentType(str, Enum):
    """Event tier, detected from the tournament name."""
    REGIONAL = "regional"
    TREASURE_CUP = "treasure_cup"
    CHAMPIONSHIP = "championship"


class TournamentSource(Base):
    """
    A site tournaments are scraped from.

    Natural key: slug. ``last_synced_at`` is stamped by every tournament sync
    that read the source's listing.
    """

    __tablename__ = "tournament_sources"

    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    base_url: Mapped[str] = mapped_column(String(500), nullable=False)
    last_synced_at: Mapped[Optional[datetime.datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<TournamentSource {self.slug}>"


class Tournament(Base):
    """
    Represents a tournament discovered on an external source.

    Natural key: (source, external_id).
    """

    __tablename__ = "tournaments"

    # Identity
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    external_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Mutable fields, refreshed on every sync
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    tournament_type: Mapped[Optional[TournamentType]] = mapped_column(
        SQLEnum(TournamentType, native_enum=False, length=20),
        nullable=True,
        index=True,
    )
    # Country when listed, otherwise region
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    region: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    format: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    player_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player_count_approx: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    winner_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    winner_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Relationships
    decks: Mapped[list["TournamentDeck"]] = relationship(
        "TournamentDeck", back_populates="tournament", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_tournaments_source_external_id"),
    )

    def __repr__(self) -> str:
        return f"<Tournament {self.source}:{self.external_id} {self.name}>"


class Player(Base):
    """
    A player with a profile on a source.

    Natural key: (source, external_player_id). Players without a profile link
    only exist as names on their decks.
    """

    __tablename__ = "players"

    source: Mapped[str] = mapped_column(String(50), nullable=False)
    external_player_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    decks: Mapped[list["TournamentDeck"]] = relationship("TournamentDeck", back_populates="player")

    __table_args__ = (
        UniqueConstraint("source", "external_player_id", name="uq_players_source_external_id"),
    )

    def __repr__(self) -> str:
        return f"<Player {self.source}:{self.external_player_id} {self.name}>"


class TournamentDeck(Base):
    """
    A deck registered by one player in one tournament.

    Natural key: (tournament_id, external_player_id).
    """

    __tablename__ = "tournament_decks"

    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    external_player_id: Mapped[str] = mapped_column(String(100), nullable=False)
    player_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("players.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    player_name: Mapped[str] = mapped_column(String(255), nullable=False)
    placement: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    leader_card_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("cards.id", ondelete="SET NULL"),
        nullable=True
    )
    archetype_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    decklist_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Relationships
    tournament: Mapped["Tournament"] = relationship("Tournament", back_populates="decks")
    player: Mapped[Optional["Player"]] = relationship("Player", back_populates="decks")
    leader_card: Mapped[Optional["Card"]] = relationship("Card")
    cards: Mapped[list["TournamentDeckCard"]] = relationship(
        "TournamentDeckCard", back_populates="deck", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "tournament_id", "external_player_id", name="uq_tournament_decks_player"
        ),
        Index("ix_tournament_decks_tournament_placement", "tournament_id", "placement"),
    )

    def __repr__(self) -> str:
        return f"<TournamentDeck {self.player_name} #{self.placement}>"


class TournamentDeckCard(Base):
    """
    A card line in a tournament deck.

    The full set for a deck is replaced on every re-sync.
    """

    __tablename__ = "tournament_deck_cards"

    deck_id: Mapped[int] = mapped_column(
        ForeignKey("tournament_decks.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    card_id: Mapped[int] = mapped_column(
        ForeignKey("cards.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    deck: Mapped["TournamentDeck"] = relationship("TournamentDeck", back_populates="cards")
    card: Mapped["Card"] = relationship("Card")

    __table_args__ = (
        UniqueConstraint("deck_id", "card_id", name="uq_tournament_deck_cards_card"),
        CheckConstraint("quantity > 0", name="check_deck_card_quantity_positive"),
    )

    def __repr__(self) -> str:
        return f"<TournamentDeckCard card_id={self.card_id} qty={self.quantity}>"
