"""Per-region sample buffers shared between the sampler and the flush coordinator."""

import threading
from typing import Dict, Iterable, List

from positions import Region, SampleRecord


class RegionBuffer:
    """Append-only per-region sample lists, drained atomically.

    Appends and drains take the same lock, so a drain never observes a
    partially applied tick and records appended after a drain belong to the
    next flush.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buffers: Dict[Region, List[SampleRecord]] = self._empty()

    @staticmethod
    def _empty() -> Dict[Region, List[SampleRecord]]:
        return {region: [] for region in Region}

    def append(self, record: SampleRecord) -> None:
        with self._lock:
            self._buffers[record.position.region].append(record)

    def extend(self, records: Iterable[SampleRecord]) -> None:
        """Append a tick's worth of records in sample order."""
        with self._lock:
            for record in records:
                self._buffers[record.position.region].append(record)

    def is_empty(self) -> bool:
        with self._lock:
            return not any(self._buffers.values())

    def drain(self) -> Dict[Region, List[SampleRecord]]:
        """Swap out the buffers and return the non-empty ones.

        Returns:
            Dict mapping region to its records in append order; regions with
            no records are omitted
        """
        with self._lock:
            drained, self._buffers = self._buffers, self._empty()
        return {region: records for region, records in drained.items() if records}

    def size(self, region: Region) -> int:
        with self._lock:
            return len(self._buffers[region])

    def __len__(self) -> int:
        with self._lock:
            return sum(len(records) for records in self._buffers.values())
