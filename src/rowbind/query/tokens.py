"""
SQL token assembly.

Statements are built as nested token groups. Falsy entries are dropped while
flattening, so optional fragments can be written inline::

    ["SELECT", columns, "FROM", table, where and ["WHERE", where]]

Parameters are always positional; each :data:`PLACEHOLDER` is rendered with
the dialect's placeholder in order of appearance.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, List

if TYPE_CHECKING:
    from ..dialects.base import Dialect


class _Placeholder:
    __slots__ = ()

    def __repr__(self) -> str:
        return "PLACEHOLDER"


PLACEHOLDER = _Placeholder()


def flatten_tokens(tokens: Iterable[Any]) -> List[Any]:
    flat: List[Any] = []
    for token in tokens:
        if token is PLACEHOLDER:
            flat.append(token)
        elif not token:
            continue
        elif isinstance(token, (list, tuple)):
            flat.extend(flatten_tokens(token))
        else:
            flat.append(token)
    return flat


def placeholders(count: int) -> List[Any]:
    """
    ``count`` comma separated placeholders.
    """
    tokens: List[Any] = []
    for index in range(count):
        if index:
            tokens.append(",")
        tokens.append(PLACEHOLDER)
    return tokens


def render_tokens(tokens: Iterable[Any], dialect: "Dialect") -> str:
    parts: List[str] = []
    position = 0
    for token in flatten_tokens(tokens):
        if token is PLACEHOLDER:
            position += 1
            parts.append(dialect.parameter_placeholder(position))
        else:
            parts.append(str(token))
    return " ".join(parts).replace("( ", "(").replace(" )", ")").replace(" ,", ",")
