"""
User and trade collaborators.

The core never owns persistence. It talks to two narrow interfaces:
- UserRepository: read and write one user record (settings + staking state)
- TradeSink: append-only trade history

StateStore implements both in memory. It backs the test suite and local
runs; a deployment swaps in database-backed implementations of the same
interfaces.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Literal, Optional

from loguru import logger

from .models import TradeRecord, UserRecord


class UserRepository(ABC):
    """Read/write access to user records."""

    @abstractmethod
    async def get_user(self, owner_id: str) -> Optional[UserRecord]:
        """Return the user record, or None if the user does not exist."""

    @abstractmethod
    async def save_user(self, user: UserRecord) -> None:
        """Persist a user record, replacing any previous version."""


class TradeSink(ABC):
    """Append-only trade history."""

    @abstractmethod
    async def append(self, record: TradeRecord) -> None:
        """Persist a new trade record."""


class StateStore(UserRepository, TradeSink):
    """
    In-memory user and trade storage.

    Users are stored as copies so callers mutating a returned record do not
    change stored state until save_user() is called.

    Attributes:
        users: Stored user records keyed by owner_id
        trades: Trade records in append order

    Examples:
        >>> store = StateStore()
        >>> await store.save_user(UserRecord(owner_id="u1"))
        >>> (await store.get_user("u1")).owner_id
        'u1'
    """

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.trades: List[TradeRecord] = []
        self._trade_ids: set = set()

    async def get_user(self, owner_id: str) -> Optional[UserRecord]:
        user = self.users.get(owner_id)
        return user.model_copy(deep=True) if user is not None else None

    async def save_user(self, user: UserRecord) -> None:
        self.users[user.owner_id] = user.model_copy(deep=True)

    def add_user(self, user: UserRecord) -> None:
        """Synchronous seeding helper."""
        self.users[user.owner_id] = user.model_copy(deep=True)

    async def append(self, record: TradeRecord) -> None:
        """
        Append a trade record.

        Raises:
            ValueError: If a record with the same trade_id already exists
        """
        if record.trade_id in self._trade_ids:
            raise ValueError(f"Duplicate trade_id {record.trade_id}")

        self._trade_ids.add(record.trade_id)
        self.trades.append(record)
        logger.debug(
            f"Stored trade {record.trade_id} for {record.owner_id} ({record.status})"
        )

    def trades_for(
        self,
        owner_id: str,
        status: Optional[Literal["pending", "placed", "failed"]] = None
    ) -> List[TradeRecord]:
        """
        Trade history for one user, optionally filtered by status.

        Examples:
            >>> store.trades_for("u1", status="failed")
            []
        """
        records = [t for t in self.trades if t.owner_id == owner_id]
        if status is not None:
            return [t for t in records if t.status == status]
        return records
