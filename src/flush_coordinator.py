"""Flush coordinator module.

Runs on the host's scheduler thread at a fixed wall-clock interval. Decides
whether a flush is due, drains the region buffers and hands the snapshot to
the flusher on the host's async context. Never blocks.
"""

import logging
import threading
from typing import Any, Optional

from flusher import Flusher
from region_buffer import RegionBuffer

logger = logging.getLogger(__name__)


class FlushCoordinator:
    """Single-flight trigger for flushes.

    The FlushInFlight latch is a plain Lock: the coordinator acquires it
    without blocking before dispatch, and the flusher releases it from the
    worker thread when the flush ends, whatever the outcome.
    """

    def __init__(
        self,
        host: Any,
        buffers: RegionBuffer,
        flusher: Flusher,
        latch: Optional[threading.Lock] = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            host: Host exposing run_async()
            buffers: Buffers to drain
            flusher: Worker that persists drained snapshots
            latch: FlushInFlight latch; pass the same lock to successive
                coordinators so a flush outliving one still blocks the next
        """
        self._host = host
        self._buffers = buffers
        self._flusher = flusher
        self._in_flight = latch if latch is not None else threading.Lock()

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    def run_cycle(self) -> bool:
        """Dispatch a flush if one is due.

        Returns:
            True if a flush was dispatched
        """
        if self._in_flight.locked():
            return False
        if self._buffers.is_empty():
            return False
        if not self._in_flight.acquire(blocking=False):
            return False

        snapshot = self._buffers.drain()
        if not snapshot:
            self._in_flight.release()
            return False

        try:
            self._host.run_async(lambda: self._flusher.flush(snapshot, self._in_flight))
        except Exception:
            lost = sum(len(records) for records in snapshot.values())
            logger.exception(f"Error dispatching flush, {lost} position(s) lost")
            self._in_flight.release()
            return False
        return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no flush is in flight.

        Must not be called from the simulation thread.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            True if idle, False if the timeout expired first
        """
        acquired = self._in_flight.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._in_flight.release()
        return acquired
