"""Flusher module for persisting drained samples.

Runs on a worker thread, never on the simulation thread. Operates only on
the snapshot handed to it by the flush coordinator.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from positions import Region, SampleRecord

logger = logging.getLogger(__name__)


def dedupe_latest(records: Sequence[SampleRecord]) -> List[SampleRecord]:
    """Keep the last-appended record per agent.

    Agents keep the order in which they first appear in the batch.

    Args:
        records: Samples in append order

    Returns:
        One record per distinct agent
    """
    latest: Dict[str, SampleRecord] = {}
    for record in records:
        latest[record.agent] = record
    return list(latest.values())


@dataclass
class FlushResult:
    """Outcome of one flush."""
    written: Dict[Region, int] = field(default_factory=dict)
    upserted: Dict[Region, int] = field(default_factory=dict)
    failed: List[Region] = field(default_factory=list)
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped


class Flusher:
    """Writes drained region batches to the position store.

    Failures are logged per region and the region's batch is dropped; there
    is no retry and nothing is put back into the buffers.
    """

    def __init__(self, store: Optional[object]) -> None:
        """Initialize the flusher.

        Args:
            store: PositionStore, or None when no store is configured
        """
        self._store = store

    def flush(
        self,
        snapshot: Dict[Region, List[SampleRecord]],
        in_flight: Optional[threading.Lock] = None,
    ) -> FlushResult:
        """Persist a drained snapshot.

        Never raises. Releases in_flight on every exit path when given.

        Args:
            snapshot: Records per region in append order
            in_flight: The coordinator's FlushInFlight latch, held by the caller

        Returns:
            FlushResult describing what was written and what was lost
        """
        try:
            return self._flush(snapshot)
        except Exception:
            logger.exception("Unexpected error while flushing positions")
            return FlushResult(failed=list(snapshot))
        finally:
            if in_flight is not None:
                in_flight.release()

    def _flush(self, snapshot: Dict[Region, List[SampleRecord]]) -> FlushResult:
        result = FlushResult()
        total = sum(len(records) for records in snapshot.values())

        if self._store is None:
            logger.warning(
                f"No database configured, discarding {total} buffered position(s)"
            )
            result.skipped = True
            return result

        cycle_start = time.time()
        for region, records in snapshot.items():
            if not records:
                logger.error(f"Flush failed for region {region.value}: empty batch")
                result.failed.append(region)
                continue

            latest = dedupe_latest(records)
            try:
                self._store.write_region(region, records, latest)
            except Exception:
                logger.exception(
                    f"Flush failed for region {region.value}: "
                    f"{len(records)} position(s) lost"
                )
                result.failed.append(region)
                continue

            result.written[region] = len(records)
            result.upserted[region] = len(latest)

        elapsed = time.time() - cycle_start
        summary = ", ".join(
            f"{region.value}: {count} rows / {result.upserted[region]} agents"
            for region, count in result.written.items()
        )
        logger.info(
            f"Flush complete: {summary or 'nothing written'}, "
            f"failed regions: {len(result.failed)}, elapsed: {elapsed:.3f}s"
        )
        return result
