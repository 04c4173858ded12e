"""
Database engine, session and transaction helpers.
"""
from decksync.db.base import Base

__all__ = ["Base"]
