"""Pydantic models for pool, cache and scrape target configuration."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, model_validator


class PoolSettings(BaseModel):
    """Browser pool sizing and timing. Durations are in seconds."""

    min_sessions: int = Field(default=1, ge=0)
    max_sessions: int = Field(default=3, ge=1)
    idle_timeout: float = Field(default=30.0, gt=0)
    acquire_timeout: float = Field(default=30.0, gt=0)
    reclaim_interval: float = Field(default=60.0, gt=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> PoolSettings:
        if self.min_sessions > self.max_sessions:
            raise ValueError(
                f"min_sessions ({self.min_sessions}) exceeds max_sessions ({self.max_sessions})"
            )
        return self


class CacheSettings(BaseModel):
    """Result cache. Durations are in seconds."""

    ttl: float = Field(default=300.0, gt=0)
    enabled: bool = True
    cleanup_interval: float = Field(default=300.0, gt=0)


class TargetSelectors(BaseModel):
    """CSS selectors for one scrape target."""

    audio: str
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    listen_button: Optional[str] = None  # clicked to reveal the audio player


class ScrapeTarget(BaseModel):
    """One fixed page plus how to extract an episode from it."""

    name: str
    url: str
    selectors: TargetSelectors
    navigation_timeout_ms: int = 10000
    settle_ms: int = 2000  # dynamic content grace period after navigation
    reveal_wait_ms: int = 1000
    audio_wait_ms: int = 5000
    task_timeout: float = 30.0  # seconds, whole extraction
