"""Logging for the queue service: stdout, a rotating file and Better Stack."""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Union

from logtail import LogtailHandler

from consultation_queue import settings

# The change feed callbacks log from their own thread
LOG_FORMAT = "%(asctime)s [%(threadName)s] %(name)s %(levelname)s: %(message)s"
LOG_FILE_NAME = "queue.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

QUIET_LOGGERS = ("urllib3", "requests")


def _level(name) -> int:
    return getattr(logging, str(name).upper(), logging.INFO)


def _file_handler(path: Path) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS)
    handler.setLevel(logging.INFO)
    return handler


def _betterstack_handler() -> logging.Handler:
    options = {"source_token": settings.BETTERSTACK_SOURCE_TOKEN}
    if settings.BETTERSTACK_INGEST_HOST:
        options["host"] = settings.BETTERSTACK_INGEST_HOST
    handler = LogtailHandler(**options)
    handler.setLevel(logging.DEBUG)
    return handler


def setup_logging(level: Optional[str] = None, log_file: Union[str, Path, None] = None) -> logging.Logger:
    """
    Replace the root handlers and return the service logger.

    Better Stack is added only when BETTERSTACK_SOURCE_TOKEN is set; if the
    handler cannot be created the service keeps logging locally.
    """
    handlers: List[logging.Handler] = [
        logging.StreamHandler(sys.stdout),
        _file_handler(Path(log_file) if log_file else settings.LOGS_DIR / LOG_FILE_NAME),
    ]
    betterstack_error = None
    if settings.BETTERSTACK_SOURCE_TOKEN:
        try:
            handlers.append(_betterstack_handler())
        except Exception as e:
            betterstack_error = e

    root_logger = logging.getLogger()
    root_logger.setLevel(_level(level or settings.LOG_LEVEL))
    root_logger.handlers = []
    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    service_logger = logging.getLogger("consultation_queue")
    if betterstack_error is not None:
        service_logger.warning(f"Better Stack logging disabled: {betterstack_error}")
    elif settings.BETTERSTACK_SOURCE_TOKEN:
        service_logger.info(
            f"Better Stack logging enabled (host: {settings.BETTERSTACK_INGEST_HOST or 'default'})"
        )
    return service_logger


logger = setup_logging()
