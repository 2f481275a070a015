"""Process-wide structlog logger.

Configured at import time from ``LOG_LEVEL`` (default INFO) so that code
running before Settings load can log. ``app.main`` then applies the
configured ``[logging] level``. Output goes to stderr, as a colored console
view on a terminal and as one JSON object per line when ``LOG_FORMAT=json``.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog


def _level(name: str | None) -> int | None:
    level = logging.getLevelName((name or "").upper())
    return level if isinstance(level, int) else None


def _renderers() -> list[structlog.typing.Processor]:
    if os.environ.get("LOG_FORMAT", "").lower() == "json":
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def _configure() -> structlog.stdlib.BoundLogger:
    logging.basicConfig(
        level=_level(os.environ.get("LOG_LEVEL")) or logging.INFO,
        format="%(message)s",
        stream=sys.stderr,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            *_renderers(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger("pincer")


logger = _configure()


def set_log_level(level_name: str) -> None:
    """Change the root level. Unknown names leave it unchanged."""
    level = _level(level_name)
    if level is not None:
        logging.getLogger().setLevel(level)


def _log_uncaught(exc_type, exc_value, exc_tb) -> None:
    if not issubclass(exc_type, KeyboardInterrupt):
        logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))
    sys.__excepthook__(exc_type, exc_value, exc_tb)


sys.excepthook = _log_uncaught
