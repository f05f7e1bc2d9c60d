"""Client-side review session as an explicit value.

A session is never mutated: every operation returns a new ReviewSession, so
the caller owns the only copy of "where am I and what have I rated".
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .scheduler import apply_rating
from .schemas import ReviewState, WordEntry


@dataclass(frozen=True)
class ReviewSession:
    words: Tuple[WordEntry, ...] = ()
    index: int = 0
    review_states: Mapping[str, ReviewState] = field(default_factory=dict)


def start_session(
    words: Iterable[WordEntry],
    review_states: Optional[Mapping[str, ReviewState]] = None,
) -> ReviewSession:
    return ReviewSession(
        words=tuple(words),
        index=0,
        review_states=dict(review_states or {}),
    )


def current_word(session: ReviewSession) -> Optional[WordEntry]:
    if not session.words:
        return None
    return session.words[session.index]


def navigate(session: ReviewSession, step: int) -> ReviewSession:
    """Move ``step`` words forward (or back when negative), stopping at either end."""
    if not session.words:
        return session
    index = min(max(session.index + step, 0), len(session.words) - 1)
    return replace(session, index=index)


def rate_current(
    session: ReviewSession,
    rating: int,
    now: int,
) -> Tuple[ReviewSession, ReviewState]:
    word = current_word(session)
    if word is None:
        raise ValueError("cannot rate: session has no words")

    state = apply_rating(session.review_states.get(word.id), word.id, rating, now)

    states: Dict[str, ReviewState] = dict(session.review_states)
    states[word.id] = state
    return replace(session, review_states=states), state


def due_words(session: ReviewSession, now: int) -> List[WordEntry]:
    """Words to study at ``now``: never-reviewed first, then most overdue first."""
    unseen: List[WordEntry] = []
    due: List[Tuple[int, WordEntry]] = []
    for w in session.words:
        state = session.review_states.get(w.id)
        if state is None:
            unseen.append(w)
        elif state.next_review_at <= now:
            due.append((state.next_review_at, w))
    due.sort(key=lambda item: item[0])
    return unseen + [w for _, w in due]


def changed_reviews(session: ReviewSession, since: int) -> List[ReviewState]:
    """Review states rated after ``since``; what the next push should carry."""
    return [
        s for s in session.review_states.values()
        if s.last_reviewed_at > since
    ]
