from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

PlaybackStatusName = Literal["idle", "playing", "paused", "finished"]


class WordTime(BaseModel):
    word: str
    start: float
    end: float


class BoxPayload(BaseModel):
    x: float
    y: float
    width: float
    height: float


class CharacterRecord(BaseModel):
    appearance_count: int = 0
    last_seen: datetime | None = None
    voice_index: int | None = None


class VoicePreference(BaseModel):
    voice_id: str
    provider: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)


class UserProfile(BaseModel):
    characters: dict[str, CharacterRecord] = Field(default_factory=dict)
    voice_preferences: dict[str, VoicePreference] = Field(default_factory=dict)
    default_voice: VoicePreference | None = None


class TimelineItem(BaseModel):
    speaker: str
    dialogue: str
    bounding_box: BoxPayload | None = None
    voice_id: str | None = None
    provider: str | None = None


class TimelinePayload(BaseModel):
    items: list[TimelineItem] = Field(default_factory=list)


class JobStatus(BaseModel):
    job_id: str
    status: Literal["queued", "processing", "ready", "failed"]
    progress: int = 0
    user_id: str | None = None
    error: str | None = None
    timeline: TimelinePayload | None = None


class CharacterCreate(BaseModel):
    name: str = Field(min_length=1)
    voice_index: int | None = None


class CharacterUpdate(BaseModel):
    voice_index: int | None = None


class PlaybackSnapshot(BaseModel):
    status: PlaybackStatusName
    current_index: int
