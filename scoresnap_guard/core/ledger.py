"""
Usage ledger.

Ordered record of accepted analysis calls used to evaluate windowed limits.
"""

import bisect
import json
from datetime import datetime, timedelta
from typing import Iterable, Iterator, List, Optional, Tuple

from scoresnap_guard.storage.models import UsageRecord

# Longest window any policy evaluates
RETENTION = timedelta(days=1)


class UsageLedger:
    """Timestamp-ascending sequence of UsageRecord.

    Not thread-safe on its own; AdmissionController serializes mutations.
    """

    def __init__(self, records: Optional[Iterable[UsageRecord]] = None):
        self._records: List[UsageRecord] = sorted(records or [])

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[UsageRecord]:
        return iter(self._records)

    @property
    def records(self) -> Tuple[UsageRecord, ...]:
        return tuple(self._records)

    def append(self, record: UsageRecord) -> None:
        # insort keeps the order even if the wall clock stepped backwards
        bisect.insort(self._records, record)

    def purge(self, now: datetime) -> int:
        """Drop records older than the retention window.

        Returns:
            Number of records removed
        """
        cutoff = UsageRecord(now - RETENTION)
        index = bisect.bisect_left(self._records, cutoff)
        if index:
            del self._records[:index]
        return index

    def count_since(self, cutoff: datetime) -> int:
        """Count records with timestamp >= cutoff."""
        index = bisect.bisect_left(self._records, UsageRecord(cutoff))
        return len(self._records) - index

    def clear(self) -> None:
        self._records.clear()

    def copy(self) -> "UsageLedger":
        return UsageLedger(self._records)

    def to_blob(self) -> bytes:
        return json.dumps([record.to_json() for record in self._records]).encode("utf-8")

    @classmethod
    def from_blob(cls, blob: bytes) -> "UsageLedger":
        """Decode a persisted ledger.

        Raises:
            ValueError: If the blob is not a JSON list of ISO-8601 timestamps
        """
        if isinstance(blob, (bytes, bytearray)):
            blob = blob.decode("utf-8")
        data = json.loads(blob)
        if not isinstance(data, list):
            raise ValueError("Persisted ledger must be a JSON list")
        records = []
        for item in data:
            if not isinstance(item, str):
                raise ValueError(f"Invalid ledger entry: {item!r}")
            records.append(UsageRecord.from_json(item))
        return cls(records)
