"""Pydantic schemas for cache entries."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class CacheEntry(BaseModel):
    """Serialized form stored under each cache key."""

    data: Any
    created_at: datetime
    expires_at: float  # epoch seconds (hard expiry)


class CacheGetResult(BaseModel):
    data: Any
    last_updated: datetime
    is_stale: bool
