"""CLI entry point for the streamstore gateway."""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from streamstore.config import StreamStoreConfig, load_config
from streamstore.logging_config import configure_logging
from streamstore.server import create_app

logger = logging.getLogger("streamstore")

# (argument dest, config section, config field) for plain value overrides.
_OVERRIDES = [
    ("host", "server", "host"),
    ("port", "server", "port"),
    ("log_level", "server", "log_level"),
    ("log_format", "server", "log_format"),
    ("shutdown_timeout", "server", "shutdown_timeout"),
    ("engine", "transport", "engine"),
    ("nats_server", "transport", "servers"),
    ("chunk_size", "objects", "chunk_size"),
    ("verify_reads", "objects", "verify_reads"),
    ("metrics", "observability", "metrics"),
]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Every option except ``--config`` defaults to None, meaning the value
    from the configuration file is kept.
    """
    parser = argparse.ArgumentParser(
        prog="streamstore",
        description="streamstore - HTTP gateway for object buckets on NATS JetStream",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("streamstore.yaml"),
        help="Path to YAML configuration file (default: streamstore.yaml)",
    )

    server = parser.add_argument_group("server")
    server.add_argument("--host", help="Host address to bind to")
    server.add_argument("--port", type=int, help="Port to listen on")
    server.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )
    server.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="'text' (human-readable) or 'json' (structured)",
    )
    server.add_argument(
        "--shutdown-timeout", type=int, help="Graceful shutdown timeout in seconds"
    )

    transport = parser.add_argument_group("transport")
    transport.add_argument(
        "--engine",
        choices=["nats", "memory"],
        help="Stream transport; 'memory' keeps everything in process",
    )
    transport.add_argument(
        "--nats-server",
        action="append",
        metavar="URL",
        help="NATS server URL (repeatable; replaces the configured list)",
    )

    objects = parser.add_argument_group("objects")
    objects.add_argument("--chunk-size", type=int, help="Default chunk size in bytes")
    objects.add_argument(
        "--verify-reads",
        action=argparse.BooleanOptionalAction,
        help="Check size and digest at the end of every GET",
    )
    objects.add_argument(
        "--metrics",
        action=argparse.BooleanOptionalAction,
        help="Expose Prometheus metrics at /metrics",
    )
    return parser.parse_args(argv)


def apply_overrides(config: StreamStoreConfig, args: argparse.Namespace) -> StreamStoreConfig:
    """Copy every option given on the command line into ``config``.

    Returns:
        The same config, re-validated so that bad overrides fail like bad
        file values do.

    Raises:
        pydantic.ValidationError: If an override is out of range.
    """
    for dest, section, field in _OVERRIDES:
        value = getattr(args, dest, None)
        if value is not None:
            setattr(getattr(config, section), field, value)
    return StreamStoreConfig.model_validate(config.model_dump())


def main(argv: list[str] | None = None) -> None:
    """Load configuration, apply CLI overrides, and serve the gateway with uvicorn."""
    args = parse_args(argv)

    # Basic stderr logger for config-loading errors
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    try:
        config = apply_overrides(load_config(args.config), args)
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    configure_logging(level=config.server.log_level, fmt=config.server.log_format)

    logger.info(
        "Starting streamstore on %s:%d (transport=%s, servers=%s)",
        config.server.host,
        config.server.port,
        config.transport.engine,
        ",".join(config.transport.servers),
    )

    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
        timeout_graceful_shutdown=config.server.shutdown_timeout,
        timeout_keep_alive=5,
    )


if __name__ == "__main__":
    main()
