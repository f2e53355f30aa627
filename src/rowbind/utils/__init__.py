"""
Utility helpers shared across rowbind packages.
"""

from .logging import configure_logging, get_logger, resolve_slow_query_ms, time_call
from .naming import camel_to_snake, split_reference

__all__ = [
    "camel_to_snake",
    "configure_logging",
    "get_logger",
    "resolve_slow_query_ms",
    "split_reference",
    "time_call",
]
