"""
Schema provisioning utilities.
"""

from .builder import SchemaBuilder

__all__ = ["SchemaBuilder"]
