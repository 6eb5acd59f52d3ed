"""Host simulation interface and a thread-driven reference host.

The pipeline only talks to the simulation through the Host protocol: it
enumerates active agents, registers per-tick and fixed-period callbacks, and
hands blocking work to an execution context distinct from the simulation
thread. ThreadedHost implements that contract with one scheduler thread and
a bounded worker pool.
"""

import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class Agent(Protocol):
    """A tracked entity as seen through the host."""

    name: str

    def location(self) -> Tuple[float, float, str]:
        """Return (x, z, world identifier)."""
        ...


class Task(Protocol):
    def cancel(self) -> None:
        ...


class Host(Protocol):
    def active_agents(self) -> Iterable[Agent]:
        ...

    def schedule_tick(self, callback: Callable[[], Any]) -> Task:
        ...

    def schedule_interval(self, seconds: float, callback: Callable[[], Any]) -> Task:
        ...

    def run_async(self, callback: Callable[[], Any]) -> None:
        ...


class ScheduledTask:
    """Handle for a callback registered with ThreadedHost."""

    def __init__(self, host: "ThreadedHost", task_id: int, name: str) -> None:
        self._host = host
        self._task_id = task_id
        self.name = name
        self.cancelled = False

    def cancel(self) -> None:
        if not self.cancelled:
            self.cancelled = True
            self._host._unregister(self._task_id)


class _Registration:
    def __init__(self, callback: Callable[[], Any], period: Optional[float]) -> None:
        self.callback = callback
        self.period = period
        self.next_run = time.monotonic()
        self.cancelled = False


class ThreadedHost:
    """Reference host driving callbacks from a single scheduler thread.

    Tick callbacks run every 1/tick_rate seconds; interval callbacks run on
    the same thread whenever their deadline has passed, first on the tick
    after registration. Async work goes to a ThreadPoolExecutor so it never
    delays the scheduler thread.
    """

    def __init__(
        self,
        agents: Callable[[], Iterable[Agent]],
        tick_rate: int = 20,
        worker_threads: int = 2,
    ) -> None:
        """Initialize the host.

        Args:
            agents: Callable returning the currently active agents
            tick_rate: Ticks per second
            worker_threads: Size of the async worker pool
        """
        self._agents = agents
        self._tick_seconds = 1.0 / tick_rate
        self._executor = ThreadPoolExecutor(
            max_workers=worker_threads, thread_name_prefix="host-async"
        )
        self._lock = threading.Lock()
        self._registrations: Dict[int, _Registration] = {}
        self._ids = itertools.count(1)
        self._shutdown_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.tick_count = 0

    def active_agents(self) -> List[Agent]:
        return list(self._agents())

    def schedule_tick(self, callback: Callable[[], Any]) -> ScheduledTask:
        return self._register(callback, None, "tick")

    def schedule_interval(self, seconds: float, callback: Callable[[], Any]) -> ScheduledTask:
        if seconds <= 0:
            raise ValueError(f"interval must be positive, got {seconds!r}")
        return self._register(callback, seconds, f"every {seconds}s")

    def run_async(self, callback: Callable[[], Any]) -> None:
        self._executor.submit(self._run_guarded, callback, "async task")

    def _register(
        self, callback: Callable[[], Any], period: Optional[float], name: str
    ) -> ScheduledTask:
        task_id = next(self._ids)
        with self._lock:
            self._registrations[task_id] = _Registration(callback, period)
        return ScheduledTask(self, task_id, name)

    def _unregister(self, task_id: int) -> None:
        with self._lock:
            registration = self._registrations.pop(task_id, None)
            if registration is not None:
                registration.cancelled = True

    def start(self) -> None:
        """Start the scheduler thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._shutdown_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="host-scheduler", daemon=True
        )
        self._thread.start()

    def shutdown(self, timeout: float = 10) -> None:
        """Stop ticking and wait for queued async work to finish."""
        self._shutdown_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Host scheduler thread did not stop within timeout")
            self._thread = None
        self._executor.shutdown(wait=True)

    def _run(self) -> None:
        while not self._shutdown_event.is_set():
            tick_start = time.monotonic()
            self.run_tick(tick_start)

            elapsed = time.monotonic() - tick_start
            sleep_time = self._tick_seconds - elapsed
            if sleep_time > 0:
                self._shutdown_event.wait(timeout=sleep_time)

    def run_tick(self, now: Optional[float] = None) -> None:
        """Run every due callback once, in registration order."""
        if now is None:
            now = time.monotonic()
        with self._lock:
            due = []
            for registration in self._registrations.values():
                if registration.period is None:
                    due.append(registration)
                elif registration.next_run <= now:
                    registration.next_run = now + registration.period
                    due.append(registration)

        for registration in due:
            # Cancelled after collection, e.g. by stop() from another thread
            if registration.cancelled:
                continue
            self._run_guarded(registration.callback, "scheduled task")
        self.tick_count += 1

    @staticmethod
    def _run_guarded(callback: Callable[[], Any], kind: str) -> None:
        try:
            callback()
        except Exception:
            logger.exception(f"Unhandled exception in {kind} {callback!r}")
