from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from .config import Settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings) -> logging.Logger:
    """Attach a single handler to the package logger.

    Uses a rotating file when ``log_path`` is set, stderr otherwise. Calling
    it again replaces the handler instead of stacking a second one.
    """
    logger = logging.getLogger("affine_docs")
    logger.setLevel(settings.log_level.upper())

    for existing in list(logger.handlers):
        if getattr(existing, "_affine_docs", False):
            logger.removeHandler(existing)
            existing.close()

    handler: logging.Handler
    if settings.log_path is not None:
        settings.log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            settings.log_path,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler._affine_docs = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger
