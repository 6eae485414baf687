"""Pydantic models for pool and cache snapshots."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class PoolStats(BaseModel):
    """Point-in-time browser pool snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    total: int = 0
    available: int = 0
    in_use: int = Field(default=0, alias="inUse")
    max_capacity: int = Field(default=0, alias="maxCapacity")


class PoolCounters(BaseModel):
    """Cumulative pool lifecycle counters."""

    created: int = 0
    creation_failures: int = 0
    destroyed: int = 0
    disconnected: int = 0
    reclaimed: int = 0
    acquired: int = 0
    released: int = 0
    timeouts: int = 0


class CacheStats(BaseModel):
    """Point-in-time cache snapshot. Expired entries count until evicted."""

    total: int = 0
    valid: int = 0
    expired: int = 0
    enabled: bool = True
