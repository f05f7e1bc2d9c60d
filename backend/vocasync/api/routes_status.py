from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from ..config import settings
from ..version import __version__

router = APIRouter(tags=["status"])


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    service: str
    version: str


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        service=settings.app_name,
        version=__version__,
    )
