"""
Data models for storage layer.

Defines the records kept in the usage ledger.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, order=True)
class UsageRecord:
    """Immutable record of one accepted analysis call.

    Ordering follows the timestamp so the ledger can stay sorted.
    """
    timestamp: datetime

    def to_json(self) -> str:
        return self.timestamp.isoformat()

    @classmethod
    def from_json(cls, value: str) -> "UsageRecord":
        timestamp = datetime.fromisoformat(value)
        if timestamp.tzinfo is not None:
            # Ledger timestamps are naive local time
            timestamp = timestamp.astimezone().replace(tzinfo=None)
        return cls(timestamp=timestamp)
