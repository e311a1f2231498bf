"""Logging setup for xrmpub.

All output goes to stderr so CLI JSON on stdout stays parseable. ``LOG_LEVEL``
picks the level and ``XRMPUB_LOG_JSON`` switches the root handler to one JSON
object per line. Context fields attached through ``ContextLogger``
(environment, resource id, path) are rendered by both formats.
"""
import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def safe_int(value: Any, default: int, logger: Optional[logging.Logger] = None, context: str = "") -> int:
    """Convert ``value`` to int, logging and returning ``default`` on failure."""
    try:
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return default
        return int(value)
    except (ValueError, TypeError):
        if logger:
            logger.warning(f"Invalid integer for {context}: {value!r}, using {default}")
        return default


def safe_float(value: Any, default: float, logger: Optional[logging.Logger] = None, context: str = "") -> float:
    try:
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return default
        return float(value)
    except (ValueError, TypeError):
        if logger:
            logger.warning(f"Invalid number for {context}: {value!r}, using {default}")
        return default


def safe_bool(value: Any, default: bool, logger: Optional[logging.Logger] = None, context: str = "") -> bool:
    """Accepts 1/0, true/false, yes/no, on/off."""
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return default
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in {"1", "true", "yes", "on"}:
        return True
    if s in {"0", "false", "no", "off"}:
        return False
    if logger:
        logger.warning(f"Invalid boolean for {context}: {value!r}, using {default}")
    return default


LOG_LEVEL = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
LOG_JSON = safe_bool(os.environ.get("XRMPUB_LOG_JSON"), False)


def _context_of(record: logging.LogRecord) -> Dict[str, Any]:
    return getattr(record, "extra_fields", None) or {}


class PlainFormatter(logging.Formatter):
    """Default text format with context fields appended as ``key=value``."""

    def __init__(self):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        context = _context_of(record)
        if not context:
            return text
        fields = " ".join(f"{key}={value}" for key, value in context.items())
        head, sep, tail = text.partition("\n")
        return f"{head} [{fields}]{sep}{tail}"


class JSONFormatter(logging.Formatter):
    """One JSON object per record; context fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }
        log_data.update(_context_of(record))
        return json.dumps(log_data, default=str)


def build_handler(json_format: bool = LOG_JSON) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_format else PlainFormatter())
    return handler


logging.basicConfig(level=LOG_LEVEL, handlers=[build_handler()])

_logger_cache: Dict[str, logging.Logger] = {}


def get_logger(name: str) -> logging.Logger:
    """Cached module logger at the configured level."""
    logger = _logger_cache.get(name)
    if logger is None:
        logger = logging.getLogger(name)
        logger.setLevel(LOG_LEVEL)
        _logger_cache[name] = logger
    return logger


class ContextLogger:
    """Logger wrapper that attaches fixed context fields to every record."""

    __slots__ = ("logger", "context")

    def __init__(self, logger: logging.Logger, **context):
        self.logger = logger
        self.context = context

    def _log(self, level: int, msg: str, exc_info: Any = None, **extra):
        fields = {**self.context, **extra}
        self.logger.log(level, msg, exc_info=exc_info, extra={"extra_fields": fields})

    def debug(self, msg: str, **extra):
        self._log(logging.DEBUG, msg, **extra)

    def info(self, msg: str, **extra):
        self._log(logging.INFO, msg, **extra)

    def warning(self, msg: str, **extra):
        self._log(logging.WARNING, msg, **extra)

    def error(self, msg: str, exc_info: Any = None, **extra):
        self._log(logging.ERROR, msg, exc_info=exc_info, **extra)
