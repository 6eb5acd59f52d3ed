"""Pipeline module tying sampling, flushing and keep-alive together.

The Pipeline object is the explicit context for one tracking pipeline: it
owns the configuration, the store connection, the change detector, the
region buffers and every scheduled task, and implements the administration
operations. Several independent pipelines can share one host.

Lifecycle Note:
    stop() keeps the change detector and buffers, so start() resumes where
    sampling left off. reload() tears down the connection and all in-memory
    state, so every agent's next sample counts as changed (cold start).
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import yaml

from change_detector import ChangeDetector
from config import Config, ConfigError, build_database_config, save_database_config
from flush_coordinator import FlushCoordinator
from flusher import Flusher
from keepalive import KeepAlive
from positions import RegionClassifier
from region_buffer import RegionBuffer
from sampler import Sampler
from store import PositionStore

logger = logging.getLogger(__name__)

DBCONFIG_USAGE = "/cmap dbconfig <host> <port> <name> <user> <password>"

Status = Tuple[bool, str]


class PipelineState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class Pipeline:
    """Position tracking pipeline bound to one host."""

    def __init__(
        self,
        config: Config,
        host: Any,
        config_path: Optional[str] = None,
        store_factory: Callable[..., Any] = PositionStore,
        teardown_timeout: float = 10,
    ) -> None:
        """Initialize the pipeline without connecting.

        Args:
            config: Loaded configuration
            host: Host simulation the pipeline samples
            config_path: YAML file that set_store_config() writes back to
            store_factory: Builds a store from (DatabaseConfig, create_tables=)
            teardown_timeout: Seconds reload()/close() wait for an in-flight flush
        """
        self._config = config
        self._host = host
        self._config_path = config_path
        self._store_factory = store_factory
        self._teardown_timeout = teardown_timeout
        self._lock = threading.RLock()
        self._state = PipelineState.STOPPED
        self._flush_latch = threading.Lock()

        self._sample_task = None
        self._flush_task = None
        self._keepalive_task = None

        self.store: Optional[Any] = None
        self._init_data()
        self._build_workers()

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is PipelineState.RUNNING

    @property
    def config(self) -> Config:
        return self._config

    def _init_data(self) -> None:
        pipeline_config = self._config.pipeline
        self.detector = ChangeDetector(pipeline_config.record_region_changes)
        self.buffers = RegionBuffer()
        self.classifier = RegionClassifier(
            pipeline_config.secondary_marker, pipeline_config.tertiary_marker
        )

    def _build_workers(self) -> None:
        self.sampler = Sampler(self._host, self.detector, self.buffers, self.classifier)
        self.flusher = Flusher(self.store)
        self.coordinator = FlushCoordinator(
            self._host, self.buffers, self.flusher, self._flush_latch
        )
        self.keepalive = KeepAlive(self._host, self.store)

    def open(self) -> bool:
        """Connect the store and schedule the keep-alive.

        A no-op while the current store is connected. A stale store is closed
        and replaced; a running pipeline keeps running on the new workers.

        Returns:
            True if a store connection is open afterwards
        """
        with self._lock:
            if self.store is not None and self.store.is_connected:
                return True

            was_running = self.is_running
            self._cancel_tasks()
            self._state = PipelineState.STOPPED
            if self._keepalive_task is not None:
                self._keepalive_task.cancel()
                self._keepalive_task = None
            if self.store is not None:
                self.store.close()
            self.store = self._connect_store()
            self._build_workers()
            if self.store is None:
                return False

            self._keepalive_task = self._host.schedule_interval(
                self._config.pipeline.keepalive_interval_seconds,
                self.keepalive.run_cycle,
            )
            logger.info("Started keep-alive connection to the database.")
            if was_running:
                self.start()
            return True

    def _connect_store(self) -> Optional[Any]:
        db_config = self._config.database
        if db_config is None:
            logger.info(
                f"Database configuration not found. Use {DBCONFIG_USAGE} "
                f"to set the database configuration."
            )
            return None

        store = self._store_factory(
            db_config, create_tables=self._config.pipeline.create_tables
        )
        try:
            store.connect()
        except Exception:
            logger.exception("Error connecting to the database.")
            return None
        return store

    def start(self) -> Status:
        """Begin per-tick sampling and periodic flushing."""
        with self._lock:
            if self.store is None or not self.store.is_connected:
                return False, (
                    "Error connecting to the database, or database configuration "
                    f"not found. Use {DBCONFIG_USAGE} to set the database configuration."
                )
            if self._state is PipelineState.RUNNING:
                return True, "Logging player coordinates is already running."

            self._sample_task = self._host.schedule_tick(self.sampler.tick)
            logger.info("Started logging player coordinates.")
            self._flush_task = self._host.schedule_interval(
                self._config.pipeline.flush_interval_seconds,
                self.coordinator.run_cycle,
            )
            logger.info("Started sending player coordinates to the database.")
            self._state = PipelineState.RUNNING
            return True, "Started logging player coordinates."

    def stop(self) -> Status:
        """Cancel sampling and flushing; an in-flight flush runs to completion."""
        with self._lock:
            if self._state is PipelineState.STOPPED:
                return True, "Logging player coordinates is already stopped."
            self._cancel_tasks()
            self._state = PipelineState.STOPPED
            return True, "Stopped logging player coordinates."

    def _cancel_tasks(self) -> None:
        if self._sample_task is not None:
            self._sample_task.cancel()
            self._sample_task = None
            logger.info("Stopped logging player coordinates.")
        if self._flush_task is not None:
            self._flush_task.cancel()
            self._flush_task = None
            logger.info("Stopped sending player coordinates to the database.")

    def _teardown(self) -> None:
        self._cancel_tasks()
        self._state = PipelineState.STOPPED
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None

        if not self.coordinator.wait_idle(timeout=self._teardown_timeout):
            logger.warning(
                f"Flush still in flight after {self._teardown_timeout}s; the connection "
                f"closes once it finishes and new flushes wait for it"
            )
        if self.store is not None:
            self.store.close()
            self.store = None

    def reload(self) -> Status:
        """Tear down connection and state, reconnect, resume if it was running."""
        with self._lock:
            was_running = self.is_running
            self._teardown()
            self._init_data()
            self.open()

            if was_running:
                ok, message = self.start()
                if not ok:
                    logger.warning(f"Reload could not resume tracking: {message}")
                    return False, f"Reloaded, but tracking was not resumed. {message}"
            return True, "Reloaded position tracking."

    def close(self) -> None:
        """Stop everything and release the store connection."""
        with self._lock:
            self._teardown()

    def set_store_config(
        self, host: Any, port: Any, name: Any, user: Any, password: Any
    ) -> Status:
        """Validate and persist new connection settings.

        The running connection is not touched; the settings apply on the next
        reload(). On any error the previous settings are kept.
        """
        previous = self._config.database
        extra = {}
        if previous is not None:
            extra = {
                "connect_timeout_seconds": previous.connect_timeout_seconds,
                "statement_timeout_ms": previous.statement_timeout_ms,
            }
        try:
            db_config = build_database_config(host, port, name, user, password, **extra)
        except ConfigError as e:
            return False, str(e)

        if self._config_path is not None:
            try:
                save_database_config(self._config_path, db_config)
            except (OSError, yaml.YAMLError):
                logger.exception("Error saving database configuration.")
                return False, "Error saving database configuration."
            logger.info(f"Database configuration saved to {self._config_path}")

        with self._lock:
            self._config.database = db_config
        return True, "Database configuration saved. Use reload to apply it."

    def list_active(self) -> List[str]:
        """Names of the agents currently active in the host."""
        return [agent.name for agent in self._host.active_agents()]
