# ============================================================================
# src/notarial_intake/utils/logging.py
# ============================================================================
"""
Logging setup for the intake engine.

Batches run concurrently for different sessions inside one event loop, so
per-batch context (session_id, batch_id) is carried in a ContextVar and
copied onto records by a handler filter rather than by swapping the global
record factory.
"""

import inspect
import functools
import json
import logging
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

CONTEXT_FIELDS = ("session_id", "batch_id")

# Third-party loggers that drown out batch progress at INFO
NOISY_LOGGERS = ("aiohttp.access", "PIL", "multipart", "python_multipart")

_log_context: ContextVar[Dict[str, Any]] = ContextVar("notarial_log_context", default={})

# Attributes every LogRecord carries; anything else was attached as context.
_STANDARD_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime"}


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    format_json: bool = False,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Logging level name
        log_file: Also write to this file
        format_json: One JSON object per line instead of plain text
        quiet: Logger names capped at WARNING
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if format_json:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s %(levelname)-7s %(name)s [%(session_id)s/%(batch_id)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    for name in quiet:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


class ContextFilter(logging.Filter):
    """Copies the active LogContext onto each record; missing fields become '-'."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        for key in CONTEXT_FIELDS:
            if not hasattr(record, key):
                setattr(record, key, "-")
        return True


class JsonFormatter(logging.Formatter):
    """Session and batch ids go top-level, any other extra under 'context'."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, "-")
            if value != "-":
                log_data[key] = value

        extra = {
            key: str(value) for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS
            and key not in CONTEXT_FIELDS
            and not key.startswith('_')
        }
        if extra:
            log_data['context'] = extra

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


class LogContext:
    """
    Adds fields to every record logged inside the block, including records
    from tasks started inside it.

        with LogContext(batch_id=batch_id):
            await run_batch()
    """

    def __init__(self, **context):
        self.context = context
        self._token = None

    def __enter__(self):
        self._token = _log_context.set({**_log_context.get(), **self.context})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _log_context.reset(self._token)


def current_context() -> Dict[str, Any]:
    return dict(_log_context.get())


def log_performance(logger: logging.Logger, operation: str):
    """Log how long the wrapped call took. Handles plain and async functions."""
    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                started = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    logger.error(f"{operation} failed after {time.perf_counter() - started:.3f}s: {e}")
                    raise
                logger.info(f"{operation} completed in {time.perf_counter() - started:.3f}s")
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(f"{operation} failed after {time.perf_counter() - started:.3f}s: {e}")
                raise
            logger.info(f"{operation} completed in {time.perf_counter() - started:.3f}s")
            return result

        return wrapper
    return decorator


class LogAdapter(logging.LoggerAdapter):
    """Binds fixed fields (usually session_id) to every call; call-site extra wins."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs
