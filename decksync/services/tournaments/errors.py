"""
Error taxonomy for the tournament sync pipeline.

Every error carries the stage it happened in, the source it came from and the
natural key of the affected entity, so the run summary can tell an operator
exactly what was skipped. Only FatalSyncError aborts a run.
"""
from enum import Enum
from typing import Optional


class SyncStage(str, Enum):
    """Pipeline stage an error was raised in."""
    FETCH = "fetch"
    PARSE = "parse"
    RESOLVE = "resolve"
    PERSIST = "persist"


class SyncError(Exception):
    """Base exception for tournament sync errors."""

    stage: SyncStage = SyncStage.FETCH

    def __init__(
        self,
        message: str,
        *,
        source: Optional[str] = None,
        key: Optional[str] = None,
        stage: Optional[SyncStage] = None,
    ):
        super().__init__(message)
        self.message = message
        self.source = source
        self.key = key
        if stage is not None:
            self.stage = stage

    def describe(self) -> str:
        """Render the error as an operator-facing line."""
        where = " ".join(part for part in (self.source, self.key) if part)
        prefix = f"[{self.stage.value}]"
        if where:
            return f"{prefix} {where}: {self.message}"
        return f"{prefix} {self.message}"


class NetworkError(SyncError):
    """A fetch failed. Transient failures were already retried by the client."""

    stage = SyncStage.FETCH

    def __init__(
        self,
        message: str,
        *,
        transient: bool = True,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.transient = transient
        self.status_code = status_code


class ParseError(SyncError):
    """A single listing row, standing, deck or card line could not be parsed."""

    stage = SyncStage.PARSE


class ResolutionMiss(SyncError):
    """A card mention matched no catalog card."""

    stage = SyncStage.RESOLVE


class ResolutionAmbiguous(SyncError):
    """A card mention matched several catalog cards with no tie-break."""

    stage = SyncStage.RESOLVE


class PersistenceError(SyncError):
    """A write for one entity failed; its sub-tree is skipped."""

    stage = SyncStage.PERSIST


class NaturalKeyCollisionError(PersistenceError):
    """A stored entity shares the natural key but describes a different event."""
    pass


class FatalSyncError(SyncError):
    """The catalog or storage is unreachable; the run cannot continue."""
    pass


class CatalogUnavailableError(FatalSyncError):
    """Raised when the card catalog cannot be queried."""

    stage = SyncStage.RESOLVE


class StorageUnavailableError(FatalSyncError):
    """Raised when the persistence layer cannot be reached."""

    stage = SyncStage.PERSIST
