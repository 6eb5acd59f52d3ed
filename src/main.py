"""Main entry point module.

Handles CLI arguments, host and pipeline lifecycle, the stdin admin console,
signal handling, and clean shutdown.
"""

import argparse
import importlib
import logging
import shlex
import signal
import sys
import threading
from typing import Any, Callable, Iterable, TextIO

import commands
import config as config_module
import host as host_module
from pipeline import Pipeline


logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_agent_source(spec: str) -> Callable[[], Iterable[Any]]:
    """Resolve a ``module:attribute`` reference to the host's agent registry.

    Args:
        spec: Import path of a callable returning the active agents

    Returns:
        The callable

    Raises:
        ValueError: If spec is malformed or does not name a callable
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Agent source must look like 'module:callable', got {spec!r}")
    try:
        module = importlib.import_module(module_name)
        source = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Cannot load agent source {spec!r}: {e}")
    if not callable(source):
        raise ValueError(f"Agent source {spec!r} is not callable")
    return source


def run_console(
    pipeline: Pipeline, shutdown_event: threading.Event, stream: TextIO
) -> None:
    """Read administration commands line by line until EOF or shutdown.

    A leading ``/cmap`` is optional. ``quit`` or ``exit`` requests shutdown.
    """
    for line in stream:
        if shutdown_event.is_set():
            break
        try:
            args = shlex.split(line)
        except ValueError as e:
            print(f"Invalid command: {e}", flush=True)
            continue
        if args and args[0] in ("/cmap", "cmap"):
            args = args[1:]
        if args and args[0] in ("quit", "exit"):
            shutdown_event.set()
            break
        try:
            print(commands.handle_command(pipeline, args), flush=True)
        except Exception:
            logger.exception(f"Error running command {line.strip()!r}")


def main() -> int:
    """Main entry point.

    Returns:
        Exit code (0 for clean shutdown)
    """
    parser = argparse.ArgumentParser(description="Agent Position Tracker")
    parser.add_argument(
        "--config", required=True, help="Path to configuration YAML file"
    )
    parser.add_argument(
        "--agents",
        required=True,
        help="Agent registry as module:callable returning the active agents",
    )
    parser.add_argument(
        "--start", action="store_true", help="Start tracking immediately"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    log_level = logging.DEBUG if args.debug else logging.INFO
    setup_logging(log_level)

    try:
        cfg = config_module.load_config(args.config)
        logger.info(f"Configuration loaded from {args.config}")
    except config_module.ConfigError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 1

    try:
        agent_source = load_agent_source(args.agents)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    sim_host = host_module.ThreadedHost(
        agent_source,
        tick_rate=cfg.pipeline.tick_rate,
        worker_threads=cfg.pipeline.worker_threads,
    )
    pipeline = Pipeline(cfg, sim_host, config_path=args.config)
    pipeline.open()

    shutdown_event = threading.Event()

    def handle_signal(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    sim_host.start()
    if args.start:
        _, message = pipeline.start()
        logger.info(message)

    console_thread = threading.Thread(
        target=run_console,
        args=(pipeline, shutdown_event, sys.stdin),
        name="console",
        daemon=True,
    )
    console_thread.start()

    try:
        while not shutdown_event.wait(timeout=30):
            logger.debug(
                f"Heartbeat: state={pipeline.state.value}, "
                f"ticks={sim_host.tick_count}, buffered={len(pipeline.buffers)}, "
                f"flush_in_flight={pipeline.coordinator.in_flight}"
            )
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        shutdown_event.set()

    logger.info("Shutting down...")
    pipeline.close()
    sim_host.shutdown()
    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
