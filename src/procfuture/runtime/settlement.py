"""Write-once resolve/reject gate.

Every ProcessFuture is backed by one SettlementCell. The cell is the only
writer of the underlying asyncio future: the first resolve/reject wins and
every later attempt is a no-op. Launch adapters rely on this to let the
"close" and "exit" listeners race safely.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

__all__ = ["SettlementCell", "SettlementState"]

logger = logging.getLogger(__name__)


class SettlementState(str, Enum):
    """Settlement state of a cell."""

    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class SettlementCell:
    """Single-assignment state over an asyncio future.

    Transitions only from PENDING, exactly once. A future cancelled from
    outside also counts as settled, so nothing is written to it afterwards.
    """

    __slots__ = ("_future", "_state")

    def __init__(self, future: asyncio.Future) -> None:
        self._future = future
        self._state = SettlementState.PENDING

    @property
    def future(self) -> asyncio.Future:
        return self._future

    @property
    def state(self) -> SettlementState:
        return self._state

    @property
    def settled(self) -> bool:
        return self._state is not SettlementState.PENDING or self._future.done()

    def resolve(self, value: Any = None) -> bool:
        """Resolve with value.

        Returns:
            True if this call settled the cell, False if it was a no-op.
        """
        if self.settled:
            logger.debug(f"Ignoring resolve on settled cell (state={self._state.value})")
            return False
        self._state = SettlementState.RESOLVED
        self._future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        """Reject with error.

        Returns:
            True if this call settled the cell, False if it was a no-op.

        Raises:
            TypeError: error is not an exception instance
        """
        if not isinstance(error, BaseException):
            raise TypeError(
                f"rejection reason must be an exception, got {type(error).__name__}"
            )
        if self.settled:
            logger.debug(f"Ignoring reject on settled cell (state={self._state.value})")
            return False
        self._state = SettlementState.REJECTED
        self._future.set_exception(error)
        return True

    def __repr__(self) -> str:
        return f"SettlementCell(state={self._state.value})"
