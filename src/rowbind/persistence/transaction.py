"""
Transaction manager wrapping the adapter's transaction boundary.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator

from ..errors import RowbindError
from ..utils import get_logger

if TYPE_CHECKING:
    from ..adapters.base import DatabaseAdapter


class TransactionError(RowbindError):
    pass


class TransactionManager:
    """
    Coordinates begin/commit/rollback of the single store transaction a
    session commit runs in. Nesting is not supported.
    """

    def __init__(self, adapter: "DatabaseAdapter") -> None:
        self.adapter = adapter
        self.active = False
        self.logger = get_logger("persistence.transaction")

    async def begin(self) -> None:
        if self.active:
            raise TransactionError("A transaction is already active; nested transactions are not supported.")
        await self.adapter.begin()
        self.active = True
        self.logger.debug("Transaction started")

    async def commit(self) -> None:
        if not self.active:
            raise TransactionError("No active transaction to commit.")
        await self.adapter.commit()
        self.active = False
        self.logger.debug("Transaction committed")

    async def rollback(self) -> None:
        if not self.active:
            raise TransactionError("No active transaction to roll back.")
        self.active = False
        await self.adapter.rollback()
        self.logger.debug("Transaction rolled back")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        await self.begin()
        try:
            yield
        except BaseException:
            await self.rollback()
            raise
        else:
            await self.commit()
