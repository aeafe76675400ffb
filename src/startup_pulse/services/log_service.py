"""Logging setup for the analysis service.

One rotating file per process plus an optional stderr stream, both on the
root logger. ``startup_pulse.*`` loggers follow the configured level; the
HTTP and Redis client libraries are held at WARNING unless the service runs
at DEBUG, so request chatter does not drown the pipeline's own records.
"""

import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from startup_pulse.config import Settings

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

PACKAGE_LOGGER = "startup_pulse"

# Third-party loggers that log every request at INFO
LIBRARY_LOGGERS = ("httpx", "httpcore", "redis", "uvicorn.access")


class SizeAndTimeRotatingHandler(TimedRotatingFileHandler):
    """Rolls the file over at midnight, or earlier once it reaches max_bytes."""

    def __init__(self, filename, max_bytes, backup_count=0, **kwargs):
        self.max_bytes = max_bytes
        super().__init__(filename, backupCount=backup_count, **kwargs)

    def _oversized(self) -> bool:
        if not self.stream or self.max_bytes <= 0:
            return False
        self.stream.seek(0, os.SEEK_END)
        return self.stream.tell() >= self.max_bytes

    def shouldRollover(self, record):
        return int(time.time()) >= self.rolloverAt or self._oversized()

    def doRollover(self):
        super().doRollover()
        # Size rollovers must not leave the next time boundary in the past
        self.rolloverAt = self.computeRollover(int(time.time()))


def library_level(level: int) -> int:
    """Level applied to LIBRARY_LOGGERS for a given service level."""
    return level if level <= logging.DEBUG else max(level, logging.WARNING)


def configure_logging(settings: "Settings", console: bool = True) -> logging.Logger:
    """Install the service's handlers on the root logger.

    Previously installed root handlers are closed and replaced, so calling
    this twice (tests, reloads) never duplicates output.

    Args:
        settings: Supplies log_dir, log_file, log_level, log_max_bytes and
            log_backup_count.
        console: Also log to stderr.

    Returns:
        The ``startup_pulse`` package logger.
    """
    level = settings.logging_level
    os.makedirs(settings.log_dir, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = SizeAndTimeRotatingHandler(
        os.path.join(settings.log_dir, settings.log_file),
        max_bytes=settings.log_max_bytes,
        backup_count=settings.log_backup_count,
        when="midnight",
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        root.addHandler(stream)

    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level(level))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    return package_logger
