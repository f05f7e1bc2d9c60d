import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api.routes_status import router as status_router
from .api.routes_sync import router as sync_router
from .config import settings
from .core.database import Base, engine
from .core.errors import SyncError
from .logging_config import setup_logging
from .version import __version__

logger = logging.getLogger(__name__)


app = FastAPI(
    title=settings.app_name,
    version=__version__,
)


@app.on_event("startup")
async def startup_event():
    setup_logging()

    # Create tables
    Base.metadata.create_all(bind=engine)
    logger.info("%s started (environment=%s)", settings.app_name, settings.environment)


# ---------- Error mapping ----------

@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": str(exc)},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Malformed batches are rejected before any store access
    errors = exc.errors()
    first = errors[0] if errors else {}
    where = ".".join(str(p) for p in first.get("loc", ()))
    message = f"{where}: {first.get('msg', 'invalid request')}" if where else "invalid request"
    return JSONResponse(
        status_code=400,
        content={"error": "Bad request", "message": message},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": str(exc)},
    )


app.include_router(status_router)
app.include_router(sync_router)
