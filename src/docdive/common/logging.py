"""Logging setup for scans: a console handler plus an optional JSON log file."""

import json
import logging
import logging.handlers
import sys
import threading
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# Libraries that report every archive member or OLE stream they touch
NOISY_LIBRARIES = {
    "py7zr": logging.WARNING,
    "olevba": logging.ERROR,
    "openpyxl": logging.WARNING,
}

CONSOLE_FORMATS = {
    "simple": "%(levelname)-8s | %(name)s | %(message)s",
    "detailed": "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s",
}
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class StructuredFormatter(logging.Formatter):
    """Formats each record as one JSON object.

    Fields bound with LogContext are merged in, so every line logged
    during a scan carries the file being scanned.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(getattr(record, "context", {}))

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str)


def console_formatter(format: str) -> logging.Formatter:
    if format == "json":
        return StructuredFormatter()
    return logging.Formatter(CONSOLE_FORMATS.get(format, CONSOLE_FORMATS["simple"]), datefmt=DATE_FORMAT)


def setup_logging(
    level: str = "INFO",
    format: str = "simple",
    log_file: Optional[Path] = None,
    max_file_size_mb: int = 10,
    backup_count: int = 5,
) -> None:
    """Replace the root logger's handlers.

    The console handler writes to stderr, because stdout carries the scan
    records. The optional log file always gets JSON lines.

    Args:
        level: Log level name, any case
        format: Console format (simple, detailed, json)
        log_file: JSON log file, rotated at max_file_size_mb
        max_file_size_mb: Rotation size
        backup_count: Rotated files kept
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(console_formatter(format))
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    for name, library_level in NOISY_LIBRARIES.items():
        logging.getLogger(name).setLevel(library_level)


# Fields bound by the innermost active LogContext of the current thread or task
_context_fields: ContextVar[Dict[str, Any]] = ContextVar("docdive_log_context", default={})
_factory_lock = threading.Lock()
_factory_installed = False


def _install_record_factory() -> None:
    """Wrap the record factory once so records pick up the bound fields."""
    global _factory_installed
    with _factory_lock:
        if _factory_installed:
            return
        previous = logging.getLogRecordFactory()

        def record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
            record = previous(*args, **kwargs)
            fields = _context_fields.get()
            if fields:
                record.context = {**getattr(record, "context", {}), **fields}
            return record

        logging.setLogRecordFactory(record_factory)
        _factory_installed = True


class LogContext:
    """Binds fields to every record created inside the with-block.

    Usage:
        with LogContext(input_file=str(path)):
            ...

    Contexts nest; inner fields win over outer ones with the same name.
    Bindings are per thread (and per asyncio task), so concurrent scans
    never see each other's fields.
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields
        self._token: Optional[Token] = None

    def __enter__(self) -> "LogContext":
        _install_record_factory()
        self._token = _context_fields.set({**_context_fields.get(), **self.fields})
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        _context_fields.reset(self._token)
        self._token = None
