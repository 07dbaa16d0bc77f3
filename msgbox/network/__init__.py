"""
Ledger and read-replica collaborators used by the message-box protocol.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

from msgbox.core.types import AccountKey, RawEntry

PAGE_LIMIT = 100


class LedgerClient(ABC):
    """Write side of the ledger plus account reads (memo, native key)."""

    @abstractmethod
    async def create_topic(self, memo: str) -> str:
        pass

    @abstractmethod
    async def submit_message(self, topic_id: str, data: Union[bytes, str]) -> int:
        """Append `data` to a topic; returns the sequence number of its first entry."""
        pass

    @abstractmethod
    async def get_account_memo(self, account_id: str) -> str:
        pass

    @abstractmethod
    async def update_account_memo(self, account_id: str, memo: str) -> None:
        pass

    @abstractmethod
    async def get_account_key(self, account_id: str) -> AccountKey:
        pass

    @abstractmethod
    async def account_exists(self, account_id: str) -> bool:
        pass

    async def close(self) -> None:
        pass


class MirrorClient(ABC):
    """Read replica: ordered, paginated access to topic entries."""

    @abstractmethod
    async def query_messages(
        self,
        topic_id: str,
        after: Optional[int] = None,
        order: str = "asc",
        limit: int = PAGE_LIMIT,
    ) -> List[RawEntry]:
        """Physical entries (chunks not reassembled) with sequence > `after`."""
        pass

    async def get_first_message(self, topic_id: str) -> Optional[RawEntry]:
        entries = await self.query_messages(topic_id, order="asc", limit=1)
        return entries[0] if entries else None

    async def get_latest_sequence(self, topic_id: str) -> Optional[int]:
        entries = await self.query_messages(topic_id, order="desc", limit=1)
        return entries[0].sequence_number if entries else None

    async def close(self) -> None:
        pass


def create_backend(uri: str, operator_id: Optional[str] = None):
    """
    sqlite://<path>     → SQLiteLedger (both ledger and read replica)
    http(s)://<host>    → MirrorNodeClient (read replica only)

    `operator_id` is the paying account for SQLite submissions; mirrors ignore it.
    """
    if uri.startswith("sqlite://"):
        from .sqlite import SQLiteLedger
        raw_path = uri[len("sqlite://"):]
        if raw_path == ":memory:":
            return SQLiteLedger(raw_path, operator_id=operator_id)
        return SQLiteLedger(Path(raw_path).resolve(), operator_id=operator_id)

    elif uri.startswith(("http://", "https://")):
        from .mirror import MirrorNodeClient
        return MirrorNodeClient(uri)
    else:
        raise ValueError(f"Unsupported backend URI: {uri}")


from .sqlite import SQLiteLedger
from .mirror import MirrorNodeClient

__all__ = ["LedgerClient", "MirrorClient", "create_backend", "SQLiteLedger", "MirrorNodeClient", "PAGE_LIMIT"]
