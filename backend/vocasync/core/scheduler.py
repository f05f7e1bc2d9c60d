"""SM-2 review scheduling.

Both functions are pure: the result depends only on the arguments, so every
device computes the same schedule for the same rating and clock value.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from .schemas import MAX_EASE, MIN_EASE, ReviewHistoryEntry, ReviewState

DAY_MS = 86_400_000

# 1=Again 2=Hard 3=Good 4=Easy 5=VeryEasy
MIN_RATING = 1
MAX_RATING = 5
PASSING_RATING = 3


@dataclass(frozen=True)
class ScheduleState:
    interval: int = 1
    ease_factor: float = MAX_EASE
    repetitions: int = 0


INITIAL_STATE = ScheduleState()


@dataclass(frozen=True)
class ScheduleResult:
    next_review_at: int
    interval: int
    ease_factor: float
    repetitions: int


def _check_rating(rating: int) -> None:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValueError(f"rating must be an integer, got {rating!r}")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValueError(f"rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}")


def next_ease(ease_factor: float, rating: int) -> float:
    miss = MAX_RATING - rating
    ease = ease_factor + (0.1 - miss * (0.08 + miss * 0.02))
    return min(max(ease, MIN_EASE), MAX_EASE)


def schedule_review(
    state: Optional[ScheduleState],
    rating: int,
    now: int,
) -> ScheduleResult:
    """
    Compute the next schedule for a word after it was rated at ``now`` (epoch ms).

    ``state`` of None means the word was never reviewed. The ease factor is
    updated first and the new value drives interval growth.
    """
    _check_rating(rating)
    if state is None:
        state = INITIAL_STATE

    ease = next_ease(state.ease_factor, rating)

    if rating < PASSING_RATING:
        repetitions = 0
        interval = 1
    else:
        repetitions = state.repetitions + 1
        if repetitions == 1:
            interval = 1
        elif repetitions == 2:
            interval = 6
        else:
            # half-up, same as the browser clients
            interval = max(1, math.floor(state.interval * ease + 0.5))

    return ScheduleResult(
        next_review_at=now + interval * DAY_MS,
        interval=interval,
        ease_factor=ease,
        repetitions=repetitions,
    )


def apply_rating(
    review_state: Optional[ReviewState],
    word_id: str,
    rating: int,
    now: int,
) -> ReviewState:
    """Return a new ReviewState for ``word_id`` with the rating recorded in its history."""
    if review_state is None:
        current = None
        history: list[ReviewHistoryEntry] = []
    else:
        current = ScheduleState(
            interval=review_state.interval,
            ease_factor=review_state.ease_factor,
            repetitions=review_state.repetitions,
        )
        history = list(review_state.history)

    result = schedule_review(current, rating, now)
    history.append(ReviewHistoryEntry(rating=rating, reviewed_at=now))

    return ReviewState(
        word_id=word_id,
        interval=result.interval,
        ease_factor=result.ease_factor,
        repetitions=result.repetitions,
        next_review_at=result.next_review_at,
        last_rating=rating,
        last_reviewed_at=now,
        history=history,
    )
