"""
Structured logging for the maintenance subsystem.

Every module logs through `get_logger(__name__)`, which returns a thin wrapper
accepting keyword fields (``logger.info("Sweep completed", task="daily")``).
Fields end up as top-level keys in the JSON file log; the console stays plain
text for operators tailing a container.
"""
import json
import logging
import logging.config
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "restaurant_ops"

# (logger name, level override); None follows the configured level
_MANAGED_LOGGERS = (
    (ROOT_LOGGER_NAME, None),
    ("uvicorn", "INFO"),
    ("apscheduler", "WARNING"),  # per-tick "Running job" lines are noise
    ("sqlalchemy.engine", "WARNING"),
)

_RESERVED_KEYS = frozenset(("timestamp", "level", "logger", "message"))


class JSONFormatter(logging.Formatter):
    """One JSON object per line; structured fields merged in at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            # sweeps and lease renewal run off the main thread
            "thread": record.threadName,
            "pid": record.process,
        }
        fields = getattr(record, "fields", None) or {}
        for key, value in fields.items():
            entry[f"field_{key}" if key in _RESERVED_KEYS else key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger:
    """Keyword-field facade over a stdlib logger. ``None`` values are dropped."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _emit(self, level: int, message: str, exc_info: Any = False, **fields: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        cleaned = {k: v for k, v in fields.items() if v is not None}
        self.logger.log(level, message, exc_info=exc_info, extra={"fields": cleaned}, stacklevel=3)

    def debug(self, message: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._emit(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._emit(logging.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self._emit(logging.ERROR, message, **fields)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Configure handlers for the package, uvicorn, APScheduler and SQLAlchemy.

    Args:
        log_level: Level for the package and root loggers
        log_file: Rotating JSON log file; parent directories are created
        enable_console: Also log human-readable lines to stdout
    """
    handlers: Dict[str, Dict[str, Any]] = {}
    if enable_console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "console",
        }
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "json",
        }
    names = list(handlers)

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JSONFormatter},
            "console": {
                "format": "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": {
            name: {"level": level or log_level, "handlers": names, "propagate": False}
            for name, level in _MANAGED_LOGGERS
        },
        "root": {"level": log_level, "handlers": names},
    })


def get_logger(name: str) -> StructuredLogger:
    """Structured logger namespaced under ``restaurant_ops``."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return StructuredLogger(name)
    return StructuredLogger(f"{ROOT_LOGGER_NAME}.{name}")


def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    request_id: Optional[str] = None
) -> None:
    """
    Audit-trail record of something the sweeps changed in the data.

    Args:
        event_type: e.g. 'unpaid_checkouts_released'
        details: Counts and ids describing the change
        request_id: Set when a manual trigger over HTTP caused the change
    """
    get_logger("audit").info(
        f"Business event: {event_type}",
        event_type=event_type,
        request_id=request_id,
        **details
    )


def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None
) -> None:
    """Timing record for one operation (a sweep run, typically)."""
    get_logger("performance").info(
        f"Performance: {operation}",
        operation=operation,
        duration_ms=duration_ms,
        **(additional_data or {})
    )
