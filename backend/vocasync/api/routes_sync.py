from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from ..core.identity import Identity
from ..core.record_store import RecordStore
from ..core.schemas import PushBatch, StoredReviewState, StoredWordEntry
from ..core.sync_engine import pull_changes, push_changes
from .deps import get_current_identity, get_record_store

router = APIRouter(prefix="/sync", tags=["sync"])


# ---------- Schemas ----------

class SyncedCounts(BaseModel):
    words: int
    reviews: int


class PushResponse(BaseModel):
    success: bool = True
    synced: SyncedCounts
    timestamp: int


class PullData(BaseModel):
    words: List[StoredWordEntry]
    reviews: List[StoredReviewState]


class PullResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    data: PullData
    timestamp: int
    total_words: int = Field(..., alias="totalWords")
    total_reviews: int = Field(..., alias="totalReviews")


# ---------- Endpoints ----------

@router.post("/push", response_model=PushResponse)
async def push(
    payload: PushBatch,
    identity: Identity = Depends(get_current_identity),
    store: RecordStore = Depends(get_record_store),
):
    result = await push_changes(store, identity.subject_id, payload)
    return PushResponse(
        synced=SyncedCounts(words=result.words, reviews=result.reviews),
        timestamp=result.timestamp,
    )


@router.get("/pull", response_model=PullResponse)
async def pull(
    last_synced_at: int = Query(0, alias="lastSyncedAt", ge=0),
    identity: Identity = Depends(get_current_identity),
    store: RecordStore = Depends(get_record_store),
):
    result = await pull_changes(store, identity.subject_id, last_synced_at)
    return PullResponse(
        data=PullData(words=result.words, reviews=result.reviews),
        timestamp=result.timestamp,
        total_words=len(result.words),
        total_reviews=len(result.reviews),
    )
