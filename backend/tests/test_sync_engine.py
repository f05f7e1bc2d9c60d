"""Tests for push/pull conflict resolution."""
import asyncio
import time

import pytest
from pydantic import ValidationError as SchemaError
from sqlalchemy.exc import OperationalError

from conftest import make_review, make_word
from vocasync.config import settings
from vocasync.core.errors import StoreError, UpstreamTimeout, ValidationError
from vocasync.core.record_store import SqlRecordStore
from vocasync.core.schemas import PushBatch
from vocasync.core.sync_engine import (
    pull_changes,
    push_changes,
    review_should_replace,
    word_should_replace,
)

USER = "google:alice"


def _batch(words=(), reviews=(), device_id="laptop", timestamp=5_000) -> PushBatch:
    return PushBatch(
        words=list(words),
        reviews=list(reviews),
        device_id=device_id,
        timestamp=timestamp,
    )


def _clock(value=9_999):
    return lambda: value


# ---------- Rules ----------

def test_word_rule():
    assert word_should_replace(None, {"updatedAt": 1})
    assert word_should_replace({"updatedAt": 1}, {"updatedAt": 2})
    assert word_should_replace({"updatedAt": 2}, {"updatedAt": 2})
    assert not word_should_replace({"updatedAt": 3}, {"updatedAt": 2})


def test_review_rule():
    older = {"history": [{"rating": 3, "reviewedAt": 100}]}
    newer = {"history": [{"rating": 3, "reviewedAt": 50}, {"rating": 4, "reviewedAt": 200}]}
    empty = {"history": []}

    assert review_should_replace(None, older)
    assert review_should_replace(older, newer)
    assert not review_should_replace(newer, older)
    assert review_should_replace(older, older)
    # missing history on either side never blocks the write
    assert review_should_replace(empty, older)
    assert review_should_replace(newer, empty)
    assert review_should_replace({}, older)


# ---------- Push ----------

@pytest.mark.asyncio
async def test_push_writes_records_with_sync_metadata(store: SqlRecordStore):
    result = await push_changes(
        store,
        USER,
        _batch(words=[make_word("apple", 100)], reviews=[make_review("apple", [150])]),
        clock=_clock(42),
    )

    assert (result.words, result.reviews, result.timestamp) == (1, 1, 42)
    stored = store.get(f"users/{USER}/words/apple")
    assert stored["updatedAt"] == 100
    assert stored["syncedAt"] == 5_000
    assert stored["syncedFrom"] == "laptop"
    assert store.get(f"users/{USER}/reviews/apple")["history"][0]["reviewedAt"] == 150


@pytest.mark.asyncio
async def test_push_skips_older_word(store: SqlRecordStore):
    await push_changes(store, USER, _batch(words=[make_word("apple", 1000, word="server")]))

    result = await push_changes(
        store, USER, _batch(words=[make_word("apple", 500, word="stale")], device_id="phone")
    )

    assert result.words == 0
    stored = store.get(f"users/{USER}/words/apple")
    assert stored["word"] == "server"
    assert stored["updatedAt"] == 1000
    assert stored["syncedFrom"] == "laptop"


@pytest.mark.asyncio
async def test_push_accepts_newer_word(store: SqlRecordStore):
    await push_changes(store, USER, _batch(words=[make_word("apple", 500)]))
    result = await push_changes(
        store, USER, _batch(words=[make_word("apple", 900, word="edited")], device_id="phone")
    )

    assert result.words == 1
    assert store.get(f"users/{USER}/words/apple")["word"] == "edited"


@pytest.mark.asyncio
async def test_push_skips_review_with_older_history(store: SqlRecordStore):
    await push_changes(store, USER, _batch(reviews=[make_review("apple", [100, 300])]))

    result = await push_changes(store, USER, _batch(reviews=[make_review("apple", [100, 200])]))

    assert result.reviews == 0
    history = store.get(f"users/{USER}/reviews/apple")["history"]
    assert history[-1]["reviewedAt"] == 300


@pytest.mark.asyncio
async def test_push_review_without_history_is_written(store: SqlRecordStore):
    await push_changes(store, USER, _batch(reviews=[make_review("apple", [300])]))

    result = await push_changes(store, USER, _batch(reviews=[make_review("apple", [])]))

    assert result.reviews == 1


@pytest.mark.asyncio
async def test_same_batch_twice_leaves_identical_state(store: SqlRecordStore):
    batch = _batch(
        words=[make_word("apple", 100), make_word("pear", 200)],
        reviews=[make_review("apple", [150])],
    )
    await push_changes(store, USER, batch)
    first = (store.children(f"users/{USER}/words"), store.children(f"users/{USER}/reviews"))

    await push_changes(store, USER, batch)
    second = (store.children(f"users/{USER}/words"), store.children(f"users/{USER}/reviews"))

    assert first == second


@pytest.mark.asyncio
async def test_duplicate_ids_in_one_batch_count_once(store: SqlRecordStore):
    result = await push_changes(
        store,
        USER,
        _batch(words=[make_word("apple", 300, word="newest"), make_word("apple", 100, word="older")]),
    )

    assert result.words == 1
    assert store.get(f"users/{USER}/words/apple")["word"] == "newest"


@pytest.mark.asyncio
async def test_reserved_characters_in_ids_are_escaped(store: SqlRecordStore):
    await push_changes(store, USER, _batch(words=[make_word("e.g./i.e.", 10)]))

    assert store.exists(f"users/{USER}/words/e%2Eg%2E%2Fi%2Ee%2E")
    pulled = await pull_changes(store, USER, 0)
    assert [w.id for w in pulled.words] == ["e.g./i.e."]


@pytest.mark.asyncio
async def test_users_do_not_see_each_other(store: SqlRecordStore):
    await push_changes(store, USER, _batch(words=[make_word("apple", 10)]))

    pulled = await pull_changes(store, "google:bob", 0)

    assert pulled.words == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "device_id, timestamp",
    [(None, 5_000), ("", 5_000), ("   ", 5_000), ("laptop", None), ("laptop", 0)],
)
async def test_push_requires_device_and_timestamp(store: SqlRecordStore, device_id, timestamp):
    batch = _batch(words=[make_word("apple", 10)], device_id=device_id, timestamp=timestamp)

    with pytest.raises(ValidationError):
        await push_changes(store, USER, batch)

    assert store.children(f"users/{USER}/words") == {}


@pytest.mark.asyncio
async def test_push_requires_namespace(store: SqlRecordStore):
    with pytest.raises(ValidationError):
        await push_changes(store, "", _batch(words=[make_word("apple", 10)]))


# ---------- Pull ----------

@pytest.mark.asyncio
async def test_pull_on_empty_namespace(store: SqlRecordStore):
    result = await pull_changes(store, USER, 0, clock=_clock(1234))

    assert result.words == []
    assert result.reviews == []
    assert result.timestamp == 1234


@pytest.mark.asyncio
async def test_pull_filters_by_cursor(store: SqlRecordStore):
    await push_changes(
        store,
        USER,
        _batch(
            words=[make_word("a", 100), make_word("b", 200), make_word("c", 300)],
            reviews=[make_review("a", [150]), make_review("b", [50, 250])],
        ),
    )

    everything = await pull_changes(store, USER, 0)
    recent = await pull_changes(store, USER, 200)

    assert [w.id for w in everything.words] == ["a", "b", "c"]
    assert [r.word_id for r in everything.reviews] == ["a", "b"]
    assert [w.id for w in recent.words] == ["c"]
    assert [r.word_id for r in recent.reviews] == ["b"]
    assert recent.words[0].synced_from == "laptop"


@pytest.mark.asyncio
async def test_pull_is_monotonic_in_cursor(store: SqlRecordStore):
    await push_changes(
        store,
        USER,
        _batch(
            words=[make_word(f"w{i}", i * 100) for i in range(1, 8)],
            reviews=[make_review(f"w{i}", [i * 100 + 50]) for i in range(1, 8)],
        ),
    )

    cursors = [0, 1, 150, 300, 420, 700, 10_000]
    previous = None
    for cursor in cursors:
        result = await pull_changes(store, USER, cursor)
        ids = {w.id for w in result.words} | {"r:" + r.word_id for r in result.reviews}
        if previous is not None:
            assert ids <= previous
        previous = ids
    assert previous == set()


@pytest.mark.asyncio
async def test_pull_reports_corrupt_records(store: SqlRecordStore):
    store.update({f"users/{USER}/words/bad": {"word": "no timestamp"}})

    with pytest.raises(StoreError):
        await pull_changes(store, USER, 0)


# ---------- Store failures ----------

class _BrokenStore(SqlRecordStore):
    def merge(self, candidates, accept):
        raise OperationalError("UPDATE records", {}, Exception("database is locked"))


class _SlowStore(SqlRecordStore):
    def children(self, path):
        time.sleep(0.3)
        return super().children(path)


@pytest.mark.asyncio
async def test_unavailable_store_surfaces_as_store_error(session_factory):
    with pytest.raises(StoreError) as excinfo:
        await push_changes(_BrokenStore(session_factory), USER, _batch(words=[make_word("a", 1)]))

    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_slow_store_times_out(session_factory, monkeypatch):
    monkeypatch.setattr(settings, "store_timeout_sec", 0.05)

    with pytest.raises(UpstreamTimeout):
        await pull_changes(_SlowStore(session_factory), USER, 0)


# ---------- Concurrent pushes ----------

class _SlowDecisionStore(SqlRecordStore):
    """Holds every merge open while it decides, and records overlap."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.active = 0
        self.max_active = 0

    def merge(self, candidates, accept):
        def slow_accept(path, existing, incoming):
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            try:
                time.sleep(0.2)
                return accept(path, existing, incoming)
            finally:
                self.active -= 1

        return super().merge(candidates, slow_accept)


@pytest.mark.asyncio
async def test_concurrent_pushes_do_not_lose_the_newer_word(session_factory):
    store = _SlowDecisionStore(session_factory)

    newer, older = await asyncio.gather(
        push_changes(store, USER, _batch(words=[make_word("apple", 1000, word="newer")], device_id="laptop")),
        push_changes(store, USER, _batch(words=[make_word("apple", 500, word="older")], device_id="phone")),
    )

    assert store.max_active == 1
    assert newer.words == 1
    stored = store.get(f"users/{USER}/words/apple")
    assert stored["word"] == "newer"
    assert stored["updatedAt"] == 1000
    # the older batch only lands if it committed before the newer one
    if older.words == 0:
        assert stored["syncedFrom"] == "laptop"


def test_push_batch_rejects_negative_timestamp():
    with pytest.raises(SchemaError):
        PushBatch(device_id="laptop", timestamp=-1)
