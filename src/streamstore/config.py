"""Configuration loading and Pydantic models for streamstore."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_CHUNK_SIZE = 128 * 1024


class ServerConfig(BaseModel):
    """HTTP gateway binding and runtime configuration."""

    host: str = "0.0.0.0"
    port: int = 9000
    log_level: str = "INFO"
    log_format: str = "text"
    shutdown_timeout: int = 30


class TransportConfig(BaseModel):
    """Message-stream transport configuration."""

    engine: str = "nats"
    servers: list[str] = Field(default_factory=lambda: ["nats://127.0.0.1:4222"])
    name: str = "streamstore"
    connect_timeout: float = 2.0
    request_timeout: float = 5.0
    api_prefix: str = "$JS.API"


class ObjectsConfig(BaseModel):
    """Object transfer protocol tuning."""

    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0)
    read_buffer_chunks: int = Field(default=8, gt=0)
    heartbeat_interval: float = Field(default=5.0, gt=0)
    reclaim_timeout: float = Field(default=30.0, gt=0)
    verify_reads: bool = False


class ObservabilityConfig(BaseModel):
    """Metrics and health check configuration."""

    metrics: bool = True
    health_check: bool = True


class StreamStoreConfig(BaseModel):
    """Top-level streamstore configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    objects: ObjectsConfig = Field(default_factory=ObjectsConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_server(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the server section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    return {
        "host": data.get("host", "0.0.0.0"),
        "port": data.get("port", 9000),
        "log_level": data.get("log_level", "INFO"),
        "log_format": data.get("log_format", "text"),
        "shutdown_timeout": data.get("shutdown_timeout", 30),
    }


def _parse_transport(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the transport section from YAML data.

    Handles nested structure: transport.nats.servers -> servers, etc.
    A bare string for ``servers`` is treated as a single URL.
    """
    if data is None:
        return {}

    result: dict[str, Any] = {"engine": data.get("engine", "nats")}

    nats_section = data.get("nats")
    if isinstance(nats_section, dict):
        servers = nats_section.get("servers", ["nats://127.0.0.1:4222"])
        if isinstance(servers, str):
            servers = [servers]
        result["servers"] = servers
        result["name"] = nats_section.get("name", "streamstore")
        result["connect_timeout"] = nats_section.get("connect_timeout", 2.0)
        result["request_timeout"] = nats_section.get("request_timeout", 5.0)
        result["api_prefix"] = nats_section.get("api_prefix", "$JS.API")

    return result


def _parse_objects(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the objects section from YAML data."""
    if data is None:
        return {}
    return {
        "chunk_size": data.get("chunk_size", DEFAULT_CHUNK_SIZE),
        "read_buffer_chunks": data.get("read_buffer_chunks", 8),
        "heartbeat_interval": data.get("heartbeat_interval", 5.0),
        "reclaim_timeout": data.get("reclaim_timeout", 30.0),
        "verify_reads": data.get("verify_reads", False),
    }


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the observability section from YAML data."""
    if data is None:
        return {}
    return {
        "metrics": data.get("metrics", True),
        "health_check": data.get("health_check", True),
    }


def load_config(path: Path) -> StreamStoreConfig:
    """Load a StreamStoreConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated StreamStoreConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If a value is out of range.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return StreamStoreConfig(
        server=ServerConfig(**_parse_server(raw.get("server"))),
        transport=TransportConfig(**_parse_transport(raw.get("transport"))),
        objects=ObjectsConfig(**_parse_objects(raw.get("objects"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
