"""Pytest configuration and shared fixtures."""

import os
import sys
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config import Config, DatabaseConfig, PipelineConfig
from positions import Region


class FakeAgent:
    """Agent whose location can be moved or made to fail."""

    def __init__(self, name: str, x: float = 0, z: float = 0, world: str = "world") -> None:
        self.name = name
        self.x = x
        self.z = z
        self.world = world
        self.error: Optional[Exception] = None

    def location(self) -> Tuple[float, float, str]:
        if self.error is not None:
            raise self.error
        return self.x, self.z, self.world


class FakeTask:
    def __init__(self, registry: List["FakeTask"], callback: Callable, seconds: Optional[float]) -> None:
        self._registry = registry
        self.callback = callback
        self.seconds = seconds
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self in self._registry:
            self._registry.remove(self)


class FakeHost:
    """Host driven by the test: ticks, intervals and async work fire on demand.

    With inline_async=False, run_async() queues callbacks until run_pending().
    """

    def __init__(self, inline_async: bool = False) -> None:
        self.agents: List[FakeAgent] = []
        self.inline_async = inline_async
        self.tick_tasks: List[FakeTask] = []
        self.interval_tasks: List[FakeTask] = []
        self.pending: List[Callable] = []
        self.dispatch_error: Optional[Exception] = None

    def active_agents(self) -> List[FakeAgent]:
        return list(self.agents)

    def schedule_tick(self, callback: Callable) -> FakeTask:
        task = FakeTask(self.tick_tasks, callback, None)
        self.tick_tasks.append(task)
        return task

    def schedule_interval(self, seconds: float, callback: Callable) -> FakeTask:
        task = FakeTask(self.interval_tasks, callback, seconds)
        self.interval_tasks.append(task)
        return task

    def run_async(self, callback: Callable) -> None:
        if self.dispatch_error is not None:
            raise self.dispatch_error
        if self.inline_async:
            callback()
        else:
            self.pending.append(callback)

    def tick(self, count: int = 1) -> None:
        for _ in range(count):
            for task in list(self.tick_tasks):
                task.callback()

    def fire_intervals(self, seconds: Optional[float] = None) -> None:
        for task in list(self.interval_tasks):
            if seconds is None or task.seconds == seconds:
                task.callback()

    def run_pending(self) -> None:
        while self.pending:
            self.pending.pop(0)()


class FakeStore:
    """In-memory stand-in for PositionStore."""

    def __init__(self, db_config: Any = None, create_tables: bool = True) -> None:
        self.db_config = db_config
        self.create_tables = create_tables
        self.connected = False
        self.connects = 0
        self.closes = 0
        self.probes = 0
        self.connect_error: Optional[Exception] = None
        self.write_error: Optional[Exception] = None
        self.probe_error: Optional[Exception] = None
        self.writes: List[Tuple[Region, list, list]] = []
        self.history: Dict[Region, List[Tuple[str, int, int]]] = {r: [] for r in Region}
        self.locations: Dict[str, Tuple[int, int, str]] = {}

    @property
    def is_connected(self) -> bool:
        return self.connected

    def connect(self) -> None:
        self.connects += 1
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def close(self) -> None:
        self.closes += 1
        self.connected = False

    def write_region(self, region: Region, history: list, latest: list) -> None:
        self.writes.append((region, list(history), list(latest)))
        if self.write_error is not None:
            raise self.write_error
        for r in history:
            self.history[region].append((r.agent, r.position.x, r.position.z))
        for r in latest:
            self.locations[r.agent] = (r.position.x, r.position.z, region.value)

    def probe(self) -> None:
        self.probes += 1
        if self.probe_error is not None:
            raise self.probe_error


def make_test_config(**pipeline_overrides: Any) -> Config:
    """Create a test configuration with a database section."""
    return Config(
        database=DatabaseConfig(
            host="localhost",
            port=5432,
            name="positions",
            user="tracker",
            password="secret",
        ),
        pipeline=PipelineConfig(**pipeline_overrides),
    )


@pytest.fixture
def fake_host():
    """Provide a host whose async work is queued until run_pending()."""
    return FakeHost()


@pytest.fixture
def fake_store():
    """Provide an in-memory store."""
    return FakeStore()


@pytest.fixture
def store_factory(fake_store):
    """Factory handing the same fake store to every pipeline open()."""
    def factory(db_config, create_tables=True):
        fake_store.db_config = db_config
        fake_store.create_tables = create_tables
        return fake_store
    return factory
