"""
Process-wide logging wiring, applied from the app lifespan.

`log_event` lines are already single-line JSON; the file handler only prefixes
time, level and logger name.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional

from skillcoach.utils.settings import Settings

REPO_ROOT = Path(__file__).resolve().parents[2]

# HTTP/PostgREST client chatter carries provider URLs and headers.
NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "postgrest", "supabase", "urllib3")

APP_LOGGERS = ("skillcoach", "uvicorn.error")

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def resolve_log_path(raw: str) -> Path:
    path = Path(raw).expanduser()
    return path if path.is_absolute() else REPO_ROOT / path


def _has_file_handler(logger: logging.Logger, path: Path) -> bool:
    target = os.path.abspath(path)
    return any(
        isinstance(h, RotatingFileHandler) and h.baseFilename == target
        for h in logger.handlers
    )


def attach_file_handler(
    path: Path,
    *,
    level: int,
    max_bytes: int,
    backup_count: int,
    logger_names: Iterable[str] = APP_LOGGERS,
) -> None:
    """One size-rotated handler per (logger, file); repeated calls add nothing."""
    path.parent.mkdir(parents=True, exist_ok=True)
    for name in logger_names:
        logger = logging.getLogger(name)
        if _has_file_handler(logger, path):
            continue
        handler = RotatingFileHandler(
            path,
            maxBytes=int(max_bytes),
            backupCount=int(backup_count),
            encoding="utf-8",
            delay=True,
        )
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)


def configure_logging(settings: Settings) -> Optional[Path]:
    """Returns the log file in use, or None when file logging is off."""
    level = logging.getLevelName(str(settings.log_level or "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.getLogger("skillcoach").setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not settings.log_to_file or not settings.log_file_path:
        return None
    path = resolve_log_path(str(settings.log_file_path))
    attach_file_handler(
        path,
        level=level,
        max_bytes=settings.log_max_bytes,
        backup_count=settings.log_backup_count,
    )
    return path
