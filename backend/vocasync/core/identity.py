"""Bearer credential → storage namespace.

Credentials are identity-provider access tokens and are always verified
against the provider's user-info endpoint. Unsigned payloads are never
trusted as proof of identity.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from ..config import settings
from .errors import AuthError, UpstreamTimeout, UpstreamUnavailable

logger = logging.getLogger(__name__)

MAX_SUBJECT_LENGTH = 128
_SUBJECT_RE = re.compile(r"[a-zA-Z0-9_:\-]+")


@dataclass
class Identity:
    subject_id: str
    claims: Dict[str, Any] = field(default_factory=dict)


def extract_bearer(authorization: Optional[str]) -> str:
    """Pull the credential out of an ``Authorization: Bearer ...`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Missing or invalid authorization header")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthError("Access token is empty")
    return token


def format_subject(prefix: str, provider_id: Any) -> str:
    if provider_id is None or provider_id == "":
        raise AuthError("Identity provider returned no user id")
    subject = f"{prefix}{provider_id}"
    if len(subject) > MAX_SUBJECT_LENGTH:
        raise AuthError("User id exceeds maximum length")
    if not _SUBJECT_RE.fullmatch(subject):
        raise AuthError("User id contains invalid characters")
    return subject


class IdentityResolver(ABC):
    """Abstract base class for anything that can vouch for a bearer credential."""

    @abstractmethod
    async def resolve(self, token: str) -> Identity:
        ...


class UserInfoIdentityResolver(IdentityResolver):
    """Verifies an OAuth access token by asking the provider who it belongs to."""

    def __init__(
        self,
        userinfo_url: str,
        timeout_sec: float = 15.0,
        subject_prefix: str = "google:",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.userinfo_url = userinfo_url
        self.timeout_sec = timeout_sec
        self.subject_prefix = subject_prefix
        self._transport = transport

    async def resolve(self, token: str) -> Identity:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_sec,
                transport=self._transport,
            ) as client:
                r = await client.get(
                    self.userinfo_url,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.TimeoutException as exc:
            logger.warning("Identity provider timed out after %ss", self.timeout_sec)
            raise UpstreamTimeout("Identity provider request timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("Identity provider unreachable: %s", exc)
            raise UpstreamUnavailable("Cannot reach identity provider") from exc

        if r.status_code != 200:
            logger.info("Identity provider rejected credential (status=%s)", r.status_code)
            raise AuthError(f"Identity provider returned {r.status_code}")

        try:
            info = r.json()
        except ValueError as exc:
            raise AuthError("Identity provider returned a malformed response") from exc
        if not isinstance(info, dict):
            raise AuthError("Identity provider returned a malformed response")

        subject = format_subject(self.subject_prefix, info.get("id"))
        claims = {
            "email": info.get("email"),
            "name": info.get("name"),
            "picture": info.get("picture"),
        }
        return Identity(subject_id=subject, claims=claims)


# Built once from settings; tests swap it through the FastAPI dependency.
resolver = UserInfoIdentityResolver(
    userinfo_url=settings.identity_userinfo_url,
    timeout_sec=settings.identity_timeout_sec,
    subject_prefix=settings.subject_prefix,
)
