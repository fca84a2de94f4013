"""
Logging configuration for the quality engine.

Every record emitted while a piece of content is being processed carries
that content's id (``%(content_id)s``), including records from the judge
tasks spawned for it, since asyncio tasks copy the current context.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler

from ..core.config import settings

content_id_var: ContextVar[str | None] = ContextVar("content_id", default=None)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(content_id)s] - %(message)s"
PRODUCTION_LOG_FORMAT = "%(levelname)s - [%(content_id)s] - %(message)s"


def get_content_id() -> str | None:
    return content_id_var.get()


@contextmanager
def content_logging_context(content_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with ``content_id``."""
    token = content_id_var.set(content_id)
    try:
        yield
    finally:
        content_id_var.reset(token)


class ContentIdLogFilter(logging.Filter):
    """Adds ``content_id`` to every record ("-" outside a processing run)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.content_id = content_id_var.get() or "-"
        return True


def setup_logging(name: str | None = None, log_level: str | None = None) -> logging.Logger:
    """
    Configure the package logger once: console plus rotating file under LOG_DIR.

    Safe to call repeatedly; later calls return the configured logger.
    """
    logger = logging.getLogger(name or "quality_engine")
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, (log_level or settings.LOG_LEVEL).upper()))
    logger.propagate = False

    formatter = logging.Formatter(
        fmt=PRODUCTION_LOG_FORMAT if settings.ENVIRONMENT == "production" else LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    content_filter = ContentIdLogFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    handlers = [console_handler]

    try:
        settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.LOG_DIR / settings.LOG_FILE,
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)
    except OSError as e:
        logger.warning(f"Could not create file handler: {e}")

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(content_filter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific module (usually ``__name__``)."""
    return logging.getLogger(name)
