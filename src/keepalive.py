"""Keep-alive module for store connectivity checks.

Periodically issues a no-op probe so that a dropped connection shows up in
the logs before the next flush needs it.
"""

import logging
import threading
from typing import Any, Optional

from store import CONNECTION_ERRORS, StoreUnavailableError

logger = logging.getLogger(__name__)


class KeepAlive:
    """Connectivity probe for the position store.

    On a connection-level failure the store is reopened once, before the next
    cycle. Other failures are only logged.
    """

    def __init__(self, host: Any, store: Optional[Any]) -> None:
        """Initialize the keep-alive.

        Args:
            host: Host exposing run_async()
            store: PositionStore, or None when no store is configured
        """
        self._host = host
        self._store = store
        self._probing = threading.Lock()

    def run_cycle(self) -> bool:
        """Dispatch a probe to the async context.

        Skipped when no store is configured or the previous probe is still
        running.

        Returns:
            True if a probe was dispatched
        """
        if self._store is None:
            return False
        if not self._probing.acquire(blocking=False):
            return False
        try:
            self._host.run_async(self._probe_and_release)
        except Exception:
            self._probing.release()
            logger.exception("Error dispatching database keep-alive")
            return False
        return True

    def _probe_and_release(self) -> None:
        try:
            self.probe()
        finally:
            self._probing.release()

    def probe(self) -> bool:
        """Run one probe on the calling thread.

        Returns:
            True if the store answered
        """
        if self._store is None:
            return False
        try:
            self._store.probe()
            return True
        except StoreUnavailableError:
            logger.warning("Database keep-alive skipped: not connected")
            self._reconnect()
            return False
        except CONNECTION_ERRORS:
            logger.exception("Error keep-alive connection to the database.")
            self._reconnect()
            return False
        except Exception:
            logger.exception("Error keep-alive connection to the database.")
            return False

    def _reconnect(self) -> None:
        logger.warning("Connection error detected, reconnecting before next cycle")
        try:
            self._store.connect()
        except Exception as e:
            logger.error(f"Reconnect to the database failed: {e}")
