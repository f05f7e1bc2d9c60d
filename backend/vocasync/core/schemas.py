from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_EASE = 1.3
MAX_EASE = 2.5


class CamelModel(BaseModel):
    """Records travel as camelCase JSON; Python code uses snake_case."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True)


# ---------- Words ----------

class WordEntry(CamelModel):
    id: str = Field(..., min_length=1)
    word: str
    phonetic: Optional[str] = None
    definitions: List[str] = Field(default_factory=list)
    audio_url: Optional[str] = Field(None, alias="audioUrl")
    updated_at: int = Field(..., alias="updatedAt", ge=0)


class StoredWordEntry(WordEntry):
    synced_at: Optional[int] = Field(None, alias="syncedAt")
    synced_from: Optional[str] = Field(None, alias="syncedFrom")


# ---------- Reviews ----------

class ReviewHistoryEntry(CamelModel):
    rating: int = Field(..., ge=1, le=5)
    reviewed_at: int = Field(..., alias="reviewedAt", ge=0)


class ReviewState(CamelModel):
    word_id: str = Field(..., alias="wordId", min_length=1)
    interval: int = Field(1, ge=1)
    ease_factor: float = Field(MAX_EASE, alias="easeFactor", ge=MIN_EASE, le=MAX_EASE)
    repetitions: int = Field(0, ge=0)
    next_review_at: int = Field(..., alias="nextReviewAt", ge=0)
    last_rating: int = Field(..., alias="lastRating", ge=1, le=5)
    last_reviewed_at: int = Field(..., alias="lastReviewedAt", ge=0)
    history: List[ReviewHistoryEntry] = Field(default_factory=list)

    @property
    def latest_reviewed_at(self) -> int:
        if self.history:
            return self.history[-1].reviewed_at
        return self.last_reviewed_at


class StoredReviewState(ReviewState):
    synced_at: Optional[int] = Field(None, alias="syncedAt")
    synced_from: Optional[str] = Field(None, alias="syncedFrom")


# ---------- Batches ----------

class PushBatch(CamelModel):
    words: List[WordEntry] = Field(default_factory=list)
    reviews: List[ReviewState] = Field(default_factory=list)
    # Presence is checked by the sync engine so the error names both fields
    device_id: Optional[str] = Field(None, alias="deviceId")
    timestamp: Optional[int] = Field(None, ge=0)

    @field_validator("device_id")
    @classmethod
    def strip_device_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None


class SyncCursor(CamelModel):
    last_synced_at: int = Field(0, alias="lastSyncedAt")
