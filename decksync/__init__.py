"""
DeckSync: One Piece TCG tournament and decklist sync.
"""
__version__ = "0.1.0"
