"""Logging for plm: terse stderr output plus a daily debug file under the plm home."""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, MutableMapping, Optional, Tuple

LOGGER_NAME = "plm"
LOG_LEVEL_ENV = "PLM_LOG_LEVEL"

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def _extra_fields(record: logging.LogRecord) -> dict:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class ContextFormatter(logging.Formatter):
    """UTC timestamps, with ``extra=`` context appended as a JSON object."""

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _extra_fields(record)
        if not context:
            return line
        try:
            encoded = json.dumps(context, sort_keys=True, default=str)
        except (TypeError, ValueError):
            encoded = repr(context)
        return f"{line} | {encoded}"


def _console_level() -> int:
    name = os.getenv(LOG_LEVEL_ENV, "WARNING").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.WARNING


class PlmLogger(logging.LoggerAdapter):
    """Adapter over the ``plm`` logger that keeps per-call ``extra`` intact."""

    def __init__(self, name: str = LOGGER_NAME) -> None:
        base = logging.getLogger(name)
        base.setLevel(logging.DEBUG)
        base.propagate = False
        if not base.handlers:
            console = logging.StreamHandler(sys.stderr)
            console.setLevel(_console_level())
            console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
            base.addHandler(console)
        super().__init__(base, {})
        self.log_file: Optional[Path] = None
        self._file_handler: Optional[logging.FileHandler] = None

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        return msg, kwargs

    def attach_file_handler(self, log_file: Path) -> Path:
        """Send debug output to ``log_file``, replacing any earlier file handler."""
        if self._file_handler is not None and self.log_file == log_file:
            return log_file
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(ContextFormatter("%(asctime)s [%(levelname)s] %(message)s"))
        if self._file_handler is not None:
            self.logger.removeHandler(self._file_handler)
            self._file_handler.close()
        self.logger.addHandler(handler)
        self._file_handler = handler
        self.log_file = log_file
        return log_file


_logger: Optional[PlmLogger] = None


def get_logger() -> PlmLogger:
    """Return the shared plm logger."""
    global _logger
    if _logger is None:
        _logger = PlmLogger()
    return _logger


def enable_file_logging(plm_home: Path) -> Path:
    """Write debug logs under ``<plm_home>/logs`` for the current day."""
    logger = get_logger()
    log_file = plm_home / "logs" / f"plm_{datetime.now().strftime('%Y%m%d')}.log"
    logger.attach_file_handler(log_file)
    logger.debug("[logging] File logging enabled at %s", log_file)
    return log_file


__all__ = ["ContextFormatter", "PlmLogger", "enable_file_logging", "get_logger"]
