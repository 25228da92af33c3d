"""Append-only event log with size based rotation."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

DEFAULT_LOG_FILE = Path("/root/scripts/logs/cpu_performance.log")
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_FORMAT = "%(asctime)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
BACKUP_SUFFIX_FORMAT = "%Y%m%d_%H%M%S"

logger = logging.getLogger(__name__)


class TimestampRotatingFileHandler(logging.FileHandler):
    """
    File handler that archives the log once it reaches ``max_bytes``.

    The size is checked after each record is written, so the file grows past
    the threshold by at most one record before it is renamed to
    ``<path>_<YYYYMMDD_HHMMSS>`` and replaced by a fresh file.
    """

    def __init__(self, filename: Union[str, Path], max_bytes: int = MAX_LOG_BYTES) -> None:
        super().__init__(filename, mode="a", encoding="utf-8")
        self.max_bytes = max_bytes

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        try:
            self.rotate()
        except OSError:
            self.handleError(record)

    def rotate(self) -> Optional[Path]:
        """Rotate the file if it is over the threshold, returning the backup path."""
        path = Path(self.baseFilename)
        self.acquire()
        try:
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                return None
            if size < self.max_bytes:
                return None

            if self.stream is not None:
                self.stream.close()
                self.stream = None

            now = datetime.now()
            backup = path.with_name(f"{path.name}_{now:{BACKUP_SUFFIX_FORMAT}}")
            os.replace(path, backup)

            self.stream = self._open()
            self.stream.write(f"Log rotated at {now:%a %b %d %H:%M:%S %Y}\n")
            self.stream.flush()
            return backup
        finally:
            self.release()


class LogManager:
    """Timestamped progress log for a single run."""

    def __init__(self, path: Union[str, Path] = DEFAULT_LOG_FILE, max_bytes: int = MAX_LOG_BYTES) -> None:
        self.path = Path(path)
        self._handler: Optional[TimestampRotatingFileHandler] = None
        # Not registered with the logging manager so records never reach the root handlers.
        self._logger = logging.Logger("cpu_performance.events", logging.INFO)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handler = TimestampRotatingFileHandler(self.path, max_bytes=max_bytes)
        except OSError as exc:
            logger.warning("Event log %s is unavailable, continuing without it: %s", self.path, exc)
            return

        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        self._logger.addHandler(handler)
        self._handler = handler

    @property
    def enabled(self) -> bool:
        return self._handler is not None

    def log_message(self, text: str) -> None:
        if self._handler is None:
            return
        self._logger.info(text)

    def rotate(self) -> Optional[Path]:
        if self._handler is None:
            return None
        try:
            return self._handler.rotate()
        except OSError as exc:
            logger.warning("Could not rotate %s: %s", self.path, exc)
            return None

    def close(self) -> None:
        if self._handler is None:
            return
        self._logger.removeHandler(self._handler)
        self._handler.close()
        self._handler = None

    def __enter__(self) -> "LogManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
