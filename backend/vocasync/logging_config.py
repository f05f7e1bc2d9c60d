"""Root logger setup, driven by ``settings.log_*``."""
import logging
import logging.handlers
from pathlib import Path

from .config import settings

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

_configured = False


def setup_logging() -> None:
    """Attach console (and optional rotating file) handlers once per process."""
    global _configured
    if _configured:
        return

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                settings.log_file,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
                encoding="utf-8",
            )
        )

    formatter = logging.Formatter(settings.log_format)
    root = logging.getLogger()
    root.setLevel(settings.log_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # request-level chatter from the HTTP client and SQL echo
    for noisy in ("httpx", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True
    logging.getLogger(__name__).info("Logging configured (level=%s)", settings.log_level)
