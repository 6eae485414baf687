"""Pydantic models for scraped poetry episodes."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Episode(BaseModel):
    """A poem with an audio reading, as returned by the API."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    title: Optional[str] = None
    description: Optional[str] = None
    audio_src: Optional[str] = Field(default=None, alias="audioSrc")
    date: Optional[str] = None

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_src)

    def to_api(self) -> dict:
        return self.model_dump(by_alias=True)


class ScrapeOutcome(BaseModel):
    """Result of one scrape target within a run."""

    target: str
    status: Literal["record", "absent", "failed"]
    episode: Optional[Episode] = None
    error: Optional[str] = None

    @classmethod
    def record(cls, target: str, episode: Episode) -> ScrapeOutcome:
        return cls(target=target, status="record", episode=episode)

    @classmethod
    def absent(cls, target: str, episode: Optional[Episode] = None) -> ScrapeOutcome:
        return cls(target=target, status="absent", episode=episode)

    @classmethod
    def failed(cls, target: str, error: str) -> ScrapeOutcome:
        return cls(target=target, status="failed", error=error)
