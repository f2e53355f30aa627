"""
Naming utilities for rowbind.
"""

import re


_FIRST_CAP_RE = re.compile("(.)([A-Z][a-z]+)")
_ALL_CAP_RE = re.compile("([a-z0-9])([A-Z])")


def camel_to_snake(name: str) -> str:
    """
    Convert ``CamelCase`` class names to ``snake_case`` collection names.
    """
    step1 = _FIRST_CAP_RE.sub(r"\1_\2", name)
    return _ALL_CAP_RE.sub(r"\1_\2", step1).lower()


def split_reference(reference: str) -> tuple[str, str]:
    """
    Split a ``collection.attribute`` reference into its two parts.
    """
    collection, sep, attribute = reference.partition(".")
    if not sep or not collection or not attribute or "." in attribute:
        raise ValueError(f"Invalid attribute reference '{reference}'; expected 'collection.attribute'")
    return collection, attribute
