"""Sampler module for per-tick position collection.

Runs on the simulation thread once per tick. Reads every active agent's
position, consults the change detector and buffers novel samples by region.
Never touches the store and never blocks.
"""

import logging
from typing import Any, List, Optional

from change_detector import ChangeDetector
from positions import Position, RegionClassifier, SampleRecord, to_block
from region_buffer import RegionBuffer

logger = logging.getLogger(__name__)


class Sampler:
    """Per-tick sampler feeding the region buffers."""

    def __init__(
        self,
        host: Any,
        detector: ChangeDetector,
        buffers: RegionBuffer,
        classifier: RegionClassifier,
    ) -> None:
        """Initialize the sampler.

        Args:
            host: Host exposing active_agents()
            detector: Last-known-position cache
            buffers: Destination for novel samples
            classifier: World identifier to Region mapping
        """
        self._host = host
        self._detector = detector
        self._buffers = buffers
        self._classifier = classifier

    def tick(self) -> int:
        """Sample every active agent once.

        Each agent is handled in isolation: a failed read is logged and the
        agent skipped. Novel samples are appended in one batch after the loop.

        Returns:
            Number of records buffered this tick
        """
        agents = self._host.active_agents()
        if not agents:
            return 0

        changed: List[SampleRecord] = []
        for agent in agents:
            try:
                record = self._sample(agent)
            except Exception:
                name = _agent_name(agent)
                logger.exception(f"Error tracking position for agent {name}")
                continue
            if record is not None:
                changed.append(record)

        if changed:
            self._buffers.extend(changed)
        return len(changed)

    def _sample(self, agent: Any) -> Optional[SampleRecord]:
        name = agent.name
        x, z, world = agent.location()
        position = Position(to_block(x), to_block(z), self._classifier.classify(world))
        if not self._detector.observe(name, position):
            return None
        return SampleRecord(name, position)


def _agent_name(agent: Any) -> str:
    try:
        return agent.name
    except Exception:
        return "<unknown>"
