"""Configuration loading and validation module.

This module handles YAML configuration loading and provides a typed
Config dataclass consumed by the pipeline. It also writes the database
section back to disk when the store connection is reconfigured.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


@dataclass
class DatabaseConfig:
    """PostgreSQL connection configuration."""
    host: str
    port: int
    name: str
    user: str
    password: str
    connect_timeout_seconds: int = 10
    statement_timeout_ms: int = 30000


@dataclass
class PipelineConfig:
    """Sampling and flush behavior configuration."""
    flush_interval_seconds: float = 2
    keepalive_interval_seconds: float = 60
    secondary_marker: str = "nether"
    tertiary_marker: str = "end"
    record_region_changes: bool = False
    create_tables: bool = True
    worker_threads: int = 2
    tick_rate: int = 20


@dataclass
class Config:
    """Root configuration dataclass.

    ``database`` is None when no store has been configured yet; the pipeline
    then runs without a connection until one is set and reloaded.
    """
    database: Optional[DatabaseConfig] = None
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)


def _get_nested(data: dict, path: str, required: bool = True, default: Any = None) -> Any:
    """Get a nested value from a dictionary using dot notation.

    Args:
        data: The dictionary to search
        path: Dot-separated path to the value (e.g., "database.host")
        required: If True, raises ConfigError when value is missing
        default: Default value if not required and missing

    Returns:
        The value at the path, or default if not required and missing

    Raises:
        ConfigError: If required value is missing
    """
    current = data

    for key in path.split("."):
        if not isinstance(current, dict):
            if required:
                raise ConfigError(f"Configuration path '{path}' is not a valid nested structure")
            return default
        if key not in current:
            if required:
                raise ConfigError(f"Missing required configuration field: {path}")
            return default
        current = current[key]

    return current


def _validate_type(value: Any, expected_type: type, field_name: str) -> None:
    """Validate that a value is of the expected type.

    Integers are accepted where a float is expected. Booleans are never
    accepted as numbers.

    Args:
        value: The value to validate
        expected_type: The expected type
        field_name: Name of the field for error messages

    Raises:
        ConfigError: If value is not of the expected type
    """
    if expected_type is int:
        if not isinstance(value, int) or isinstance(value, bool):
            raise ConfigError(
                f"Field '{field_name}' must be an integer, got {type(value).__name__}"
            )
    elif expected_type is float:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ConfigError(
                f"Field '{field_name}' must be a number, got {type(value).__name__}"
            )
    elif not isinstance(value, expected_type):
        raise ConfigError(
            f"Field '{field_name}' must be of type {expected_type.__name__}, got {type(value).__name__}"
        )


def validate_port(value: Any) -> int:
    """Coerce and range-check a port number.

    Accepts ints or decimal strings, so the same check serves both the YAML
    loader and the administration command surface.

    Raises:
        ConfigError: If the value is not an integer in 1..65535
    """
    if isinstance(value, bool):
        raise ConfigError("Invalid port number.")
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError("Invalid port number.")
    if isinstance(value, float) and value != port:
        raise ConfigError("Invalid port number.")
    if not 1 <= port <= 65535:
        raise ConfigError("Invalid port number.")
    return port


def build_database_config(
    host: Any, port: Any, name: Any, user: Any, password: Any, **extra: Any
) -> DatabaseConfig:
    """Validate raw connection fields and build a DatabaseConfig.

    Raises:
        ConfigError: If any field is missing or malformed
    """
    for field_name, value in (("host", host), ("name", name), ("user", user)):
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"Field 'database.{field_name}' must be a non-empty string")
    if password is None:
        password = ""
    _validate_type(password, str, "database.password")

    db = DatabaseConfig(
        host=host,
        port=validate_port(port),
        name=name,
        user=user,
        password=password,
    )

    if "connect_timeout_seconds" in extra:
        _validate_type(extra["connect_timeout_seconds"], int, "database.connect_timeout_seconds")
        if extra["connect_timeout_seconds"] < 0:
            raise ConfigError("database.connect_timeout_seconds must be >= 0")
        db.connect_timeout_seconds = extra["connect_timeout_seconds"]
    if "statement_timeout_ms" in extra:
        _validate_type(extra["statement_timeout_ms"], int, "database.statement_timeout_ms")
        if extra["statement_timeout_ms"] < 0:
            raise ConfigError("database.statement_timeout_ms must be >= 0")
        db.statement_timeout_ms = extra["statement_timeout_ms"]

    return db


def _load_pipeline_config(data: dict) -> PipelineConfig:
    pipeline_data = _get_nested(data, "pipeline", required=False, default={})
    if pipeline_data is None:
        pipeline_data = {}
    if not isinstance(pipeline_data, dict):
        raise ConfigError("Configuration section 'pipeline' must be a dictionary")

    defaults = PipelineConfig()
    values = {}
    field_types = {
        "flush_interval_seconds": float,
        "keepalive_interval_seconds": float,
        "secondary_marker": str,
        "tertiary_marker": str,
        "record_region_changes": bool,
        "create_tables": bool,
        "worker_threads": int,
        "tick_rate": int,
    }
    for name, expected_type in field_types.items():
        value = _get_nested(
            pipeline_data, name, required=False, default=getattr(defaults, name)
        )
        _validate_type(value, expected_type, f"pipeline.{name}")
        values[name] = value

    if values["flush_interval_seconds"] <= 0:
        raise ConfigError("pipeline.flush_interval_seconds must be > 0")
    if values["keepalive_interval_seconds"] <= 0:
        raise ConfigError("pipeline.keepalive_interval_seconds must be > 0")
    if not values["secondary_marker"] or not values["tertiary_marker"]:
        raise ConfigError("pipeline region markers must be non-empty strings")
    if values["worker_threads"] < 1:
        raise ConfigError("pipeline.worker_threads must be >= 1")
    if values["tick_rate"] < 1:
        raise ConfigError("pipeline.tick_rate must be >= 1")

    return PipelineConfig(**values)


def load_config(path: str) -> Config:
    """Load and validate configuration from a YAML file.

    A missing ``database`` section is not an error: the pipeline starts
    without a store connection.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Config: Validated configuration object

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}")

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a YAML dictionary")

    database = None
    database_data = _get_nested(data, "database", required=False, default=None)
    if database_data is not None:
        if not isinstance(database_data, dict):
            raise ConfigError("Configuration section 'database' must be a dictionary")
        extra = {
            key: database_data[key]
            for key in ("connect_timeout_seconds", "statement_timeout_ms")
            if key in database_data
        }
        database = build_database_config(
            _get_nested(database_data, "host"),
            _get_nested(database_data, "port"),
            _get_nested(database_data, "name"),
            _get_nested(database_data, "user"),
            _get_nested(database_data, "password", required=False, default=""),
            **extra,
        )

    return Config(database=database, pipeline=_load_pipeline_config(data))


def save_database_config(path: str, db: DatabaseConfig) -> None:
    """Persist the database section of a configuration file.

    Other sections of an existing file are preserved. Writes to a temp file
    first, then uses os.replace() for atomic rename.

    Args:
        path: Path to the YAML configuration file (created if missing)
        db: The database configuration to store
    """
    data: dict = {}
    if os.path.exists(path):
        with open(path, 'r') as f:
            loaded = yaml.safe_load(f)
        if isinstance(loaded, dict):
            data = loaded

    data["database"] = {
        "host": db.host,
        "port": db.port,
        "name": db.name,
        "user": db.user,
        "password": db.password,
        "connect_timeout_seconds": db.connect_timeout_seconds,
        "statement_timeout_ms": db.statement_timeout_ms,
    }

    tmp_path = f"{path}.tmp"
    try:
        with open(tmp_path, 'w') as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        os.replace(tmp_path, path)
    except Exception:
        try:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        except OSError:
            pass
        raise
