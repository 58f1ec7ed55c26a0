"""
Structured JSON logging.

Every record carries the ids bound to the current context: the HTTP request
being served (`request_id`) and the statement import in progress
(`import_id`). Context lives in a ContextVar so it follows sync endpoints
into the worker thread Starlette runs them in.
"""
import datetime
import json
import logging
import os
from contextvars import ContextVar
from typing import Any, Dict, Optional

_context: ContextVar[Dict[str, str]] = ContextVar("rumbo_log_context", default={})

_LOGGER_KWARGS = {'exc_info', 'stack_info', 'stacklevel', 'extra'}


def _bind(key: str, value: str):
    _context.set({**_context.get(), key: value})


def _unbind(key: str):
    current = _context.get()
    if key in current:
        _context.set({k: v for k, v in current.items() if k != key})


def set_import_id(import_id: str):
    _bind("import_id", import_id)


def clear_import_id():
    _unbind("import_id")


def set_request_id(request_id: str):
    _bind("request_id", request_id)


def clear_request_id():
    _unbind("request_id")


def current_context() -> Dict[str, str]:
    """Copy of the ids bound to the current context."""
    return dict(_context.get())


class JSONFormatter(logging.Formatter):
    """One JSON object per line: core fields, bound ids, then keyword fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": record.lineno,
            **_context.get(),
        }

        fields = getattr(record, "extra_fields", None)
        if isinstance(fields, dict):
            log_data.update(fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(log_level: Optional[int] = None, log_file: Optional[str] = "logs/rumbo.log"):
    """
    Configure global logging settings.

    The level defaults to RUMBO_LOG_LEVEL (a level name), falling back to INFO.
    """
    if log_level is None:
        log_level = logging.getLevelName(os.getenv("RUMBO_LOG_LEVEL", "INFO").upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handlers = [logging.StreamHandler()]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    for handler in handlers:
        handler.setFormatter(JSONFormatter())
        root_logger.addHandler(handler)

    get_logger(__name__).info("Logging initialized.", log_level=logging.getLevelName(log_level), log_file=log_file)


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """
    Adapter that turns keyword arguments into structured fields:

        logger.info("CSV parsed", bank="Nequi", tx_count=12)

    Fields given to `get_logger(name, **bound)` are added to every record.
    """

    def process(self, msg: Any, kwargs: Any) -> tuple:
        passthrough = {k: v for k, v in kwargs.items() if k in _LOGGER_KWARGS}
        fields = {**self.extra, **{k: v for k, v in kwargs.items() if k not in _LOGGER_KWARGS}}

        extra = dict(passthrough.get("extra") or {})
        extra["extra_fields"] = {**extra.get("extra_fields", {}), **fields}
        passthrough["extra"] = extra
        return msg, passthrough


def get_logger(name: str, **bound: Any) -> StructuredLoggerAdapter:
    """
    Return a structured logger for the given name.
    """
    return StructuredLoggerAdapter(logging.getLogger(name), bound)
