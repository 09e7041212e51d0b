from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from core.config import settings


_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Third-party loggers and the level they are capped at outside development.
_QUIET_LOGGERS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.INFO,
}


def _resolve_level(env: str) -> int:
    if settings.log_level:
        return logging.getLevelName(settings.log_level)
    return logging.INFO if env == "production" else logging.DEBUG


def _file_handler(log_dir: Path) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        log_dir / "app.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )


def setup_logging(*, environment: str, log_dir: Path | None = None) -> None:
    """Configure root logging once per process.

    Console always; a rotating `app.log` under `log_dir` in production.
    Later calls are no-ops so that importing the app in tests keeps pytest's handlers.
    """

    root = logging.getLogger()
    if root.handlers:
        return

    env = (environment or "development").lower().strip()
    level = _resolve_level(env)
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if env == "production":
        handlers.append(_file_handler(log_dir or settings.log_dir))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers)

    for name, cap in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, cap) if env == "production" else max(level, logging.INFO))
