"""Device-side helpers for talking to the sync API."""

from __future__ import annotations

import time
from typing import Any, Dict, Iterable, Optional, Tuple

import httpx

from ..core.schemas import ReviewState, SyncCursor, WordEntry

REQUEST_TIMEOUT = 15.0  # seconds


def _auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def push_changes(
    client: httpx.AsyncClient,
    base_url: str,
    token: str,
    device_id: str,
    words: Iterable[WordEntry] = (),
    reviews: Iterable[ReviewState] = (),
    timestamp: Optional[int] = None,
) -> Dict[str, Any]:
    payload = {
        "words": [w.to_record() for w in words],
        "reviews": [r.to_record() for r in reviews],
        "deviceId": device_id,
        "timestamp": timestamp if timestamp is not None else int(time.time() * 1000),
    }
    resp = await client.post(
        f"{base_url}/sync/push",
        json=payload,
        headers=_auth_headers(token),
        timeout=REQUEST_TIMEOUT,
    )
    resp.raise_for_status()
    return resp.json()


async def pull_changes(
    client: httpx.AsyncClient,
    base_url: str,
    token: str,
    cursor: SyncCursor,
) -> Tuple[Dict[str, Any], SyncCursor]:
    """
    Fetch everything changed since ``cursor``.
    Returns the response data and the cursor to use next time.
    """
    resp = await client.get(
        f"{base_url}/sync/pull",
        params={"lastSyncedAt": cursor.last_synced_at},
        headers=_auth_headers(token),
        timeout=REQUEST_TIMEOUT,
    )
    resp.raise_for_status()
    body = resp.json()

    data = {
        "words": [WordEntry.model_validate(w) for w in body["data"]["words"]],
        "reviews": [ReviewState.model_validate(r) for r in body["data"]["reviews"]],
    }
    return data, SyncCursor(last_synced_at=body["timestamp"])
