from typing import Optional

from fastapi import Depends, Header

from ..core.database import SessionLocal
from ..core.identity import Identity, IdentityResolver, extract_bearer, resolver
from ..core.record_store import RecordStore, SqlRecordStore

_store = SqlRecordStore(SessionLocal)


# FastAPI dependencies; tests override these two
def get_record_store() -> RecordStore:
    return _store


def get_identity_resolver() -> IdentityResolver:
    return resolver


async def get_current_identity(
    authorization: Optional[str] = Header(None),
    identity_resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Identity:
    token = extract_bearer(authorization)
    return await identity_resolver.resolve(token)
