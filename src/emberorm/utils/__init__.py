"""
Utility helpers shared across emberorm packages.
"""

from .logging import configure_logging, get_logger, resolve_slow_query_ms, time_call
from .naming import camel_to_snake, foreign_key_column, join_table_name
from .redaction import DSNConfig, parse_dsn, redact_params

__all__ = [
    "DSNConfig",
    "camel_to_snake",
    "configure_logging",
    "foreign_key_column",
    "get_logger",
    "join_table_name",
    "parse_dsn",
    "redact_params",
    "resolve_slow_query_ms",
    "time_call",
]
