"""Process-wide logging to stdout/stderr or to an append-only file."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import IO, Optional, Union

LOGGER_NAME = "dufs"

_LEVEL_NAMES = {
    logging.CRITICAL: "ERROR",
    logging.ERROR: "ERROR",
    logging.WARNING: "WARN",
    logging.INFO: "INFO",
}


class LoggerInitError(RuntimeError):
    """Raised when logging cannot be set up."""


def _timestamp(created: float) -> str:
    moment = datetime.fromtimestamp(created).astimezone()
    text = moment.isoformat(timespec="seconds")
    if moment.utcoffset() == timedelta(0):
        text = text[: -len("+00:00")] + "Z"
    return text


class _SimpleHandler(logging.Handler):
    """Writes ``<timestamp> <LEVEL> - <message>`` lines."""

    def __init__(self, file: Optional[IO[str]] = None) -> None:
        super().__init__(level=logging.INFO)
        self._file = file

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _LEVEL_NAMES.get(record.levelno, record.levelname)
            text = f"{_timestamp(record.created)} {level} - {record.getMessage()}"
            if self._file is not None:
                self._file.write(text + "\n")
                self._file.flush()
            elif record.levelno > logging.INFO:
                print(text, file=sys.stderr)
            else:
                print(text, file=sys.stdout)
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            if self._file is not None:
                self._file.close()
                self._file = None
        finally:
            super().close()


def init(log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """Install the server logger, replacing any handler installed earlier."""
    file: Optional[IO[str]] = None
    if log_file is not None:
        try:
            file = open(log_file, "a", encoding="utf-8")
        except OSError as exc:
            raise LoggerInitError(f"Failed to open the log file at '{log_file}'") from exc

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, _SimpleHandler):
            logger.removeHandler(handler)
            handler.close()
    logger.addHandler(_SimpleHandler(file))
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger