"""Structured logging helpers for emberorm."""

from __future__ import annotations

import logging
import os
import time
import uuid
from contextvars import ContextVar
from typing import Any, Iterable, Optional

LOG_LEVEL_ENV = "EMBERORM_LOG_LEVEL"
SLOW_QUERY_ENV = "EMBERORM_SLOW_QUERY_MS"

_correlation_id: ContextVar[str | None] = ContextVar("emberorm_correlation_id", default=None)


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def _level_from_env(default: int) -> int:
    value = os.getenv(LOG_LEVEL_ENV)
    if not value:
        return default
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else default


def configure_logging(level: int | None = None) -> None:
    logger = logging.getLogger("emberorm")
    if logger.handlers:
        if level is not None:
            logger.setLevel(level)
        return
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(correlation_id)s | %(name)s | %(message)s"
    )
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())
    logger.addHandler(handler)
    logger.setLevel(level if level is not None else _level_from_env(logging.INFO))


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(f"emberorm.{name}")


def set_correlation_id(value: Optional[str] = None) -> str:
    token = value or str(uuid.uuid4())
    _correlation_id.set(token)
    return token


def get_correlation_id() -> str:
    cid = _correlation_id.get()
    if cid is None:
        cid = set_correlation_id()
    return cid


def resolve_slow_query_ms(default: int = 100, override: int | None = None) -> int:
    """
    Pick the slow-statement threshold: explicit override, then environment, then default.
    """
    if override is not None:
        return override
    value = os.getenv(SLOW_QUERY_ENV)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logging.getLogger("emberorm.utils").warning(
            "Ignoring non-integer %s=%r", SLOW_QUERY_ENV, value
        )
        return default


def time_call(
    name: str,
    logger: logging.Logger,
    *,
    sql: str | None = None,
    params: Iterable[Any] | None = None,
    threshold_ms: int = 100,
):
    start = time.monotonic()

    class Timer:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            elapsed_ms = (time.monotonic() - start) * 1000
            level = logging.WARNING if elapsed_ms >= threshold_ms else logging.DEBUG
            extra = {"sql": sql, "params": params, "elapsed_ms": elapsed_ms}
            logger.log(level, "%s took %.2fms", name, elapsed_ms, extra=extra)

    return Timer()
