"""Test configuration."""
from typing import Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vocasync.api.deps import get_identity_resolver, get_record_store
from vocasync.core.database import Base
from vocasync.core.errors import AuthError
from vocasync.core.identity import Identity, IdentityResolver
from vocasync.core.record_store import SqlRecordStore
from vocasync.core.schemas import ReviewHistoryEntry, ReviewState, WordEntry
from vocasync.main import app

TOKENS = {
    "token-alice": "google:alice",
    "token-bob": "google:bob",
}


class StaticIdentityResolver(IdentityResolver):
    """Resolves a fixed set of test tokens without any network call."""

    def __init__(self, tokens: Dict[str, str]):
        self.tokens = tokens

    async def resolve(self, token: str) -> Identity:
        subject = self.tokens.get(token)
        if subject is None:
            raise AuthError("Invalid access token")
        return Identity(subject_id=subject, claims={"email": f"{subject}@example.com"})


def make_word(word_id: str, updated_at: int, **overrides) -> WordEntry:
    data = {
        "id": word_id,
        "word": overrides.pop("word", word_id),
        "definitions": ["a test definition"],
        "updatedAt": updated_at,
    }
    data.update(overrides)
    return WordEntry.model_validate(data)


def make_review(word_id: str, reviewed_at: Optional[List[int]] = None, **overrides) -> ReviewState:
    history = [
        ReviewHistoryEntry(rating=3, reviewed_at=ts) for ts in (reviewed_at or [])
    ]
    last = history[-1].reviewed_at if history else 0
    data = {
        "wordId": word_id,
        "interval": 1,
        "easeFactor": 2.5,
        "repetitions": len(history),
        "nextReviewAt": last + 86_400_000,
        "lastRating": 3,
        "lastReviewedAt": last,
        "history": [h.to_record() for h in history],
    }
    data.update(overrides)
    return ReviewState.model_validate(data)


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    """A fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    finally:
        engine.dispose()


@pytest.fixture
def store(session_factory: sessionmaker) -> SqlRecordStore:
    return SqlRecordStore(session_factory)


@pytest.fixture
def resolver() -> StaticIdentityResolver:
    return StaticIdentityResolver(TOKENS)


@pytest.fixture
def api(store: SqlRecordStore, resolver: StaticIdentityResolver) -> Generator[None, None, None]:
    """Point the app's dependencies at the test store and resolver."""
    app.dependency_overrides[get_record_store] = lambda: store
    app.dependency_overrides[get_identity_resolver] = lambda: resolver
    try:
        yield
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def client(api) -> TestClient:
    return TestClient(app, raise_server_exceptions=False)
