"""Database module for PostgreSQL operations.

All SQL operations are isolated here. No other module writes SQL.

Table names are interpolated from the closed Region enum only; every value
is passed as a bound parameter.
"""

from typing import List, Optional, Sequence, Tuple

import psycopg2
from psycopg2.extras import execute_values

from config import DatabaseConfig
from positions import Region, SampleRecord

LOCATION_TABLE = "location"


def connect(db: DatabaseConfig) -> "psycopg2.extensions.connection":
    """Open a new PostgreSQL connection.

    Args:
        db: Connection settings

    Returns:
        psycopg2 connection with autocommit disabled

    Raises:
        psycopg2.Error: If the server cannot be reached or rejects the login
    """
    kwargs = {}
    if db.statement_timeout_ms > 0:
        kwargs["options"] = f"-c statement_timeout={db.statement_timeout_ms}"

    conn = psycopg2.connect(
        host=db.host,
        port=db.port,
        dbname=db.name,
        user=db.user,
        password=db.password,
        connect_timeout=db.connect_timeout_seconds,
        **kwargs,
    )
    conn.autocommit = False
    return conn


def init_db(conn) -> None:
    """Create the history and current-location tables if missing.

    Args:
        conn: Database connection
    """
    with conn.cursor() as cur:
        for region in Region:
            cur.execute(f"""
                CREATE TABLE IF NOT EXISTS {region.table} (
                    id SERIAL PRIMARY KEY,
                    agent_name TEXT NOT NULL,
                    x INTEGER NOT NULL,
                    z INTEGER NOT NULL
                )
            """)

        cur.execute(f"""
            CREATE TABLE IF NOT EXISTS {LOCATION_TABLE} (
                agent_name TEXT PRIMARY KEY,
                x INTEGER NOT NULL,
                z INTEGER NOT NULL,
                region TEXT NOT NULL
            )
        """)
    conn.commit()


def insert_history(conn, region: Region, records: Sequence[SampleRecord]) -> int:
    """Insert every sampled record into the region's history table.

    Args:
        conn: Database connection
        region: Region whose table receives the rows
        records: Samples in append order, duplicates included

    Returns:
        Number of rows written

    Raises:
        ValueError: If records is empty
    """
    if not records:
        raise ValueError(f"refusing to write an empty history batch for {region.value}")
    rows = [(r.agent, r.position.x, r.position.z) for r in records]
    with conn.cursor() as cur:
        execute_values(
            cur,
            f"INSERT INTO {region.table} (agent_name, x, z) VALUES %s",
            rows,
            page_size=len(rows),
        )
    return len(rows)


def upsert_locations(conn, region: Region, records: Sequence[SampleRecord]) -> int:
    """Upsert the current location of each agent, keyed on agent_name.

    Callers must pass at most one record per agent; PostgreSQL rejects an
    ON CONFLICT statement that touches the same key twice.

    Args:
        conn: Database connection
        region: Region recorded for every row
        records: Latest record per agent

    Returns:
        Number of rows written

    Raises:
        ValueError: If records is empty
    """
    if not records:
        raise ValueError(f"refusing to write an empty location batch for {region.value}")
    rows = [(r.agent, r.position.x, r.position.z, region.value) for r in records]
    with conn.cursor() as cur:
        execute_values(
            cur,
            f"""INSERT INTO {LOCATION_TABLE} (agent_name, x, z, region) VALUES %s
                ON CONFLICT (agent_name) DO UPDATE SET
                    x = EXCLUDED.x,
                    z = EXCLUDED.z,
                    region = EXCLUDED.region""",
            rows,
            page_size=len(rows),
        )
    return len(rows)


def commit_batch(conn) -> None:
    """Commit all pending writes in a single transaction.

    Args:
        conn: Database connection
    """
    conn.commit()


def ping(conn) -> None:
    """Issue a trivial round trip.

    Raises:
        psycopg2.Error: If the connection is unusable
    """
    with conn.cursor() as cur:
        cur.execute("SELECT 1")
        cur.fetchone()
    conn.rollback()


def get_history(conn, region: Region) -> List[Tuple[str, int, int]]:
    """Get all history rows for a region in insertion order.

    Args:
        conn: Database connection
        region: Region to read

    Returns:
        List of (agent_name, x, z) tuples
    """
    with conn.cursor() as cur:
        cur.execute(f"SELECT agent_name, x, z FROM {region.table} ORDER BY id")
        return [(row[0], row[1], row[2]) for row in cur.fetchall()]


def get_location(conn, agent: str) -> Optional[Tuple[int, int, str]]:
    """Get the current location row for an agent.

    Args:
        conn: Database connection
        agent: Agent name

    Returns:
        (x, z, region) tuple or None if the agent has never been flushed
    """
    with conn.cursor() as cur:
        cur.execute(
            f"SELECT x, z, region FROM {LOCATION_TABLE} WHERE agent_name = %s",
            (agent,),
        )
        row = cur.fetchone()
    return (row[0], row[1], row[2]) if row is not None else None
