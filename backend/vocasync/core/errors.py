"""Error taxonomy for sync requests.

Every failure that crosses the request boundary is one of these. The
FastAPI handlers in ``main`` turn them into ``{"error", "message"}`` bodies
with the attached status code. A losing conflict is not an error and has
no class here.
"""


class SyncError(Exception):
    status_code = 500
    error = "Sync failed"


class AuthError(SyncError):
    """Missing, malformed, expired or rejected bearer credential."""

    status_code = 401
    error = "Unauthorized"


class ValidationError(SyncError):
    """Batch is missing required fields or carries malformed records."""

    status_code = 400
    error = "Bad request"


class UpstreamTimeout(SyncError):
    """Identity provider or record store did not answer in time."""

    status_code = 504
    error = "Gateway timeout"


class UpstreamUnavailable(SyncError):
    """Identity provider could not be reached at all."""

    status_code = 503
    error = "Service unavailable"


class StoreError(SyncError):
    error = "Store failure"

    def __init__(self, message: str, *, unavailable: bool = False):
        super().__init__(message)
        if unavailable:
            self.status_code = 503
