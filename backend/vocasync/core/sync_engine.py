"""Push/pull synchronization of words and review states.

Conflicts are settled per record by last-writer-wins on the record's own
timestamp. A losing record is skipped and only shows up as a lower accepted
count. Every decision compares timestamps, so re-pushing a batch after a
failure is always safe.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from pydantic import ValidationError as SchemaError
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from ..config import settings
from .errors import StoreError, UpstreamTimeout, ValidationError
from .key_codec import decode_key, encode_key
from .record_store import Record, RecordStore
from .schemas import (
    PushBatch,
    StoredReviewState,
    StoredWordEntry,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], int]
T = TypeVar("T")


def current_millis() -> int:
    return int(time.time() * 1000)


@dataclass
class PushResult:
    words: int
    reviews: int
    timestamp: int


@dataclass
class PullResult:
    words: List[StoredWordEntry] = field(default_factory=list)
    reviews: List[StoredReviewState] = field(default_factory=list)
    timestamp: int = 0


# ---------- Paths ----------

def words_path(subject_id: str) -> str:
    return f"users/{subject_id}/words"


def reviews_path(subject_id: str) -> str:
    return f"users/{subject_id}/reviews"


def word_path(subject_id: str, word_id: str) -> str:
    return f"{words_path(subject_id)}/{encode_key(word_id)}"


def review_path(subject_id: str, word_id: str) -> str:
    return f"{reviews_path(subject_id)}/{encode_key(word_id)}"


# ---------- Conflict rules ----------

def word_should_replace(existing: Optional[Record], incoming: Record) -> bool:
    """The stored word survives only when it is strictly newer."""
    if existing is None:
        return True
    return not existing.get("updatedAt", 0) > incoming.get("updatedAt", 0)


def _latest_reviewed_at(record: Record) -> Optional[int]:
    history = record.get("history") or []
    if not history:
        return None
    return history[-1].get("reviewedAt")


def review_should_replace(existing: Optional[Record], incoming: Record) -> bool:
    """
    The stored review survives only when both sides have history and the
    stored side's latest review is strictly later.
    """
    if existing is None:
        return True
    existing_at = _latest_reviewed_at(existing)
    incoming_at = _latest_reviewed_at(incoming)
    if existing_at is None or incoming_at is None:
        return True
    return not existing_at > incoming_at


def _collapse(
    records: Sequence[T],
    key: Callable[[T], str],
    should_replace: Callable[[Optional[Record], Record], bool],
) -> Dict[str, T]:
    # Same id twice in one batch: apply the store rule between the two copies
    kept: Dict[str, T] = {}
    for r in records:
        k = key(r)
        prev = kept.get(k)
        if prev is None or should_replace(prev.to_record(), r.to_record()):
            kept[k] = r
    return kept


# ---------- Store access ----------

async def _store_call(fn: Callable[..., T], *args: Any) -> T:
    """Run a blocking store call off the event loop with a deadline."""
    timeout = settings.store_timeout_sec
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("Record store call %s timed out after %ss", fn.__name__, timeout)
        raise UpstreamTimeout("Record store request timed out") from exc
    except OperationalError as exc:
        logger.warning("Record store unavailable: %s", exc)
        raise StoreError("Record store unavailable", unavailable=True) from exc
    except SQLAlchemyError as exc:
        logger.warning("Record store failure: %s", exc)
        raise StoreError("Record store failure") from exc


# ---------- Push ----------

async def push_changes(
    store: RecordStore,
    subject_id: str,
    batch: PushBatch,
    clock: Clock = current_millis,
) -> PushResult:
    """Merge a device's batch into the user's namespace; return accepted counts."""
    if not subject_id:
        raise ValidationError("Missing user namespace")
    if not batch.device_id or not batch.timestamp:
        raise ValidationError("Missing deviceId or timestamp")

    meta = {"syncedAt": batch.timestamp, "syncedFrom": batch.device_id}

    words = _collapse(batch.words, lambda w: w.id, word_should_replace)
    reviews = _collapse(batch.reviews, lambda r: r.word_id, review_should_replace)

    candidates: Dict[str, Record] = {}
    rules: Dict[str, Callable[[Optional[Record], Record], bool]] = {}
    for word_id, w in words.items():
        path = word_path(subject_id, word_id)
        candidates[path] = {**w.to_record(), **meta}
        rules[path] = word_should_replace
    for word_id, r in reviews.items():
        path = review_path(subject_id, word_id)
        candidates[path] = {**r.to_record(), **meta}
        rules[path] = review_should_replace

    def accept(path: str, existing: Optional[Record], incoming: Record) -> bool:
        ok = rules[path](existing, incoming)
        if not ok:
            logger.debug("Skipping %s: stored copy is newer", path)
        return ok

    accepted = await _store_call(store.merge, candidates, accept)

    word_paths = {word_path(subject_id, k) for k in words}
    word_count = sum(1 for p in accepted if p in word_paths)
    review_count = len(accepted) - word_count

    logger.info(
        "Push for %s from device %s: %d/%d words, %d/%d reviews accepted",
        subject_id,
        batch.device_id,
        word_count,
        len(words),
        review_count,
        len(reviews),
    )
    return PushResult(words=word_count, reviews=review_count, timestamp=clock())


# ---------- Pull ----------

def _after_cursor(ts: int, last_synced_at: int) -> bool:
    # A zero cursor means "first sync": everything, timestamps notwithstanding
    if last_synced_at <= 0:
        return True
    return ts > last_synced_at


def _load(model, key_field: str, key: str, value: Record):
    value.setdefault(key_field, decode_key(key))
    try:
        return model.model_validate(value)
    except SchemaError as exc:
        raise StoreError(f"Corrupt record under key {key!r}") from exc


async def pull_changes(
    store: RecordStore,
    subject_id: str,
    last_synced_at: int = 0,
    clock: Clock = current_millis,
) -> PullResult:
    """Everything in the user's namespace that changed after ``last_synced_at``."""
    if not subject_id:
        raise ValidationError("Missing user namespace")

    # Full scan of the namespace, filtered here; fine for one user's vocabulary
    raw_words = await _store_call(store.children, words_path(subject_id))
    raw_reviews = await _store_call(store.children, reviews_path(subject_id))

    words: List[StoredWordEntry] = []
    for key, value in raw_words.items():
        w = _load(StoredWordEntry, "id", key, value)
        if _after_cursor(w.updated_at, last_synced_at):
            words.append(w)

    reviews: List[StoredReviewState] = []
    for key, value in raw_reviews.items():
        r = _load(StoredReviewState, "wordId", key, value)
        if _after_cursor(r.latest_reviewed_at, last_synced_at):
            reviews.append(r)

    logger.info(
        "Pull for %s since %d: %d words, %d reviews",
        subject_id,
        last_synced_at,
        len(words),
        len(reviews),
    )
    return PullResult(words=words, reviews=reviews, timestamp=clock())


