"""
Query construction and execution.
"""

from .query import COMPARATORS, Query
from .tokens import PLACEHOLDER, flatten_tokens, render_tokens

__all__ = ["COMPARATORS", "PLACEHOLDER", "Query", "flatten_tokens", "render_tokens"]
