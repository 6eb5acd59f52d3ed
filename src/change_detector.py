"""Change detector module.

Keeps the last known position of every agent sampled since the last reset
and decides whether a new sample is novel.

Region Policy Note:
    By default only x and z are compared. An agent that changes region while
    standing on the same x/z (for example a portal with matching coordinates)
    does NOT produce a new sample. Set record_region_changes to count a
    region transition as movement too.
"""

import threading
from typing import Dict, List, Optional

from positions import Position


class ChangeDetector:
    """Thread-safe per-agent last-known-position cache.

    Only the simulation thread observes positions; the lock covers resets
    issued from the administration side during a reload.
    """

    def __init__(self, record_region_changes: bool = False) -> None:
        self._record_region_changes = record_region_changes
        self._lock = threading.Lock()
        self._last_known: Dict[str, Position] = {}

    def observe(self, agent: str, position: Position) -> bool:
        """Record a sample and report whether it counts as a change.

        Args:
            agent: Agent name
            position: Freshly sampled position

        Returns:
            True if the agent had no stored position or moved; the stored
            position is updated only in that case
        """
        with self._lock:
            last = self._last_known.get(agent)
            if last is not None and not self._differs(last, position):
                return False
            self._last_known[agent] = position
            return True

    def _differs(self, last: Position, current: Position) -> bool:
        if last.x != current.x or last.z != current.z:
            return True
        return self._record_region_changes and last.region != current.region

    def last_position(self, agent: str) -> Optional[Position]:
        with self._lock:
            return self._last_known.get(agent)

    def known_agents(self) -> List[str]:
        with self._lock:
            return list(self._last_known)

    def reset(self) -> None:
        """Forget every agent; the next sample of each counts as changed."""
        with self._lock:
            self._last_known.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_known)
