"""Position store module.

Owns the single PostgreSQL connection used by the flush and keep-alive
workers and serializes access to it, so a keep-alive probe never lands in the
middle of a flush transaction.
"""

import logging
import threading
from typing import Optional, Sequence

import psycopg2

import database
from config import DatabaseConfig
from positions import Region, SampleRecord

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError)


class StoreUnavailableError(Exception):
    """Raised when an operation needs a connection and none is open."""
    pass


class PositionStore:
    """Relational store for position history and current locations."""

    def __init__(self, db_config: DatabaseConfig, create_tables: bool = True) -> None:
        """Initialize the store without connecting.

        Args:
            db_config: Connection settings
            create_tables: Run the schema bootstrap after each connect
        """
        self._db_config = db_config
        self._create_tables = create_tables
        self._lock = threading.Lock()
        self._conn = None

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._conn is not None and not self._conn.closed

    def connect(self) -> None:
        """Open the connection, replacing any existing one.

        Raises:
            psycopg2.Error: If the server cannot be reached or the schema
                bootstrap fails
        """
        with self._lock:
            self._close_locked()
            conn = database.connect(self._db_config)
            try:
                if self._create_tables:
                    database.init_db(conn)
            except Exception:
                conn.close()
                raise
            self._conn = conn
        logger.info(
            f"Connected to the database {self._db_config.name!r} "
            f"at {self._db_config.host}:{self._db_config.port}"
        )

    def close(self) -> None:
        with self._lock:
            was_open = self._conn is not None
            self._close_locked()
        if was_open:
            logger.info("Disconnected from the database.")

    def _close_locked(self) -> None:
        if self._conn is None:
            return
        try:
            if not self._conn.closed:
                self._conn.close()
        except psycopg2.Error:
            logger.exception("Error disconnecting from the database.")
        finally:
            self._conn = None

    def _require_conn(self):
        if self._conn is None or self._conn.closed:
            raise StoreUnavailableError("No open database connection")
        return self._conn

    def write_region(
        self,
        region: Region,
        history: Sequence[SampleRecord],
        latest: Sequence[SampleRecord],
    ) -> None:
        """Write one region's batch as a single transaction.

        Args:
            region: Region being flushed
            history: Every record drained for the region
            latest: Latest record per agent

        Raises:
            StoreUnavailableError: If no connection is open
            psycopg2.Error: If either write fails; the transaction is rolled back
        """
        with self._lock:
            conn = self._require_conn()
            try:
                database.insert_history(conn, region, history)
                database.upsert_locations(conn, region, latest)
                database.commit_batch(conn)
            except Exception:
                self._rollback_quietly(conn)
                raise

    def probe(self) -> None:
        """Run a no-op round trip against the store.

        Raises:
            StoreUnavailableError: If no connection is open
            psycopg2.Error: If the round trip fails
        """
        with self._lock:
            conn = self._require_conn()
            try:
                database.ping(conn)
            except Exception:
                self._rollback_quietly(conn)
                raise

    @staticmethod
    def _rollback_quietly(conn) -> None:
        try:
            if not conn.closed:
                conn.rollback()
        except psycopg2.Error as e:
            logger.warning(f"Rollback failed: {e}")

    @property
    def config(self) -> Optional[DatabaseConfig]:
        return self._db_config
