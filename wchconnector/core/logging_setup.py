"""Logging helpers for the connector.

Library modules only create loggers; handlers are installed by the
application through :func:`configure_logging` (or
:func:`configure_logging_from_config`, which reads the ``logging`` section).

Bulk deletes and taxonomy runs are wrapped in :func:`log_performance`, which
emits one ``performance`` event per operation. With ``use_json`` these events
carry their fields as top-level JSON keys.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional

if TYPE_CHECKING:
    from .config import Config

LIBRARY_LOGGER = "wchconnector"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
# httpx logs every request at INFO
TRANSPORT_LOGGERS = ("httpx", "httpcore")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, merged with the record's ``extra_fields``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(getattr(record, "extra_fields", None) or {})
        return json.dumps(payload, default=str)


@contextmanager
def log_performance(operation: str, logger: Optional[logging.Logger] = None) -> Iterator[Dict[str, Any]]:
    """Time ``operation`` and log a single performance event when it ends.

    Args:
        operation: Name shown in the event, e.g. ``bulk_apply[asset]``.
        logger: Defaults to the ``wchconnector`` logger.

    Yields:
        A dict the caller may fill with extra fields (counts, ids) that are
        attached to the event.

    The event is logged whether the block succeeds or raises; exceptions
    propagate unchanged.
    """
    logger = logger or logging.getLogger(LIBRARY_LOGGER)
    fields: Dict[str, Any] = {}
    started = time.monotonic()
    success = False
    try:
        yield fields
        success = True
    finally:
        duration_ms = (time.monotonic() - started) * 1000
        fields.update(
            event_type="performance",
            operation=operation,
            duration_ms=duration_ms,
            success=success,
        )
        logger.info(
            "%s completed in %.2fms (success=%s)",
            operation,
            duration_ms,
            success,
            extra={"extra_fields": fields},
        )


def configure_logging(
    log_file: Optional[Path] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    use_json: bool = False,
    console_output: bool = True,
    transport_level: int = logging.WARNING,
) -> None:
    """Install console and/or rotating file handlers on the root logger.

    Parameters
    ----------
    log_file: Path, optional
        Rotating log file; its directory is created when missing.
    level: int
        Level of the root logger and of the installed handlers.
    max_bytes: int
        Size at which the log file is rotated.
    backup_count: int
        Number of rotated files kept.
    use_json: bool
        Format records with :class:`JSONFormatter`.
    console_output: bool
        Add a stderr handler.
    transport_level: int
        Level for the ``httpx``/``httpcore`` loggers, which otherwise
        report every single request.

    Does nothing when the root logger already has handlers.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(level)
    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(max(level, transport_level))

    formatter: logging.Formatter
    if use_json:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers = []
    if console_output:
        handlers.append(logging.StreamHandler())
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)


def configure_logging_from_config(config: "Config") -> None:
    """Configure logging from ``logging.level``, ``logging.file`` and ``logging.json``.

    An unknown level name falls back to INFO.
    """
    level = logging.getLevelName(str(config.get("logging.level", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO
    log_file = config.get("logging.file")
    use_json = str(config.get("logging.json", False)).lower() in ("1", "true", "yes", "on")
    configure_logging(log_file=Path(log_file) if log_file else None, level=level, use_json=use_json)
