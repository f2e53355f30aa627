"""
Persistence layer: sessions, identity map, unit of work and transactions.
"""

from .identity_map import IdentityMap
from .session import Session
from .transaction import TransactionError, TransactionManager
from .unit_of_work import UnitOfWork

__all__ = ["IdentityMap", "Session", "TransactionError", "TransactionManager", "UnitOfWork"]
