"""
SQLAlchemy models for the tournament ingestion pipeline.
"""
from decksync.models.card import Card
from decksync.models.tournament import (
    Player,
    Tournament,
    TournamentDeck,
    TournamentDeckCard,
    TournamentSource,
    TournamentType,
)

__all__ = [
    "Card",
    "Player",
    "Tournament",
    "TournamentDeck",
    "TournamentDeckCard",
    "TournamentSource",
    "TournamentType",
]
