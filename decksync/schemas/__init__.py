"""
Pydantic schemas for API requests and responses.
"""
from decksync.schemas.sync import SyncRunRequest, SyncRunResponse

__all__ = ["SyncRunRequest", "SyncRunResponse"]
