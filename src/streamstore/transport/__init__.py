"""Message-stream transports for streamstore."""

from typing import TYPE_CHECKING

from streamstore.transport.base import (
    ConsumerDetails,
    ConsumerSettings,
    DeliveredMessage,
    MessageHandler,
    PubAck,
    StoredMessage,
    StreamDetails,
    StreamSettings,
    StreamTransport,
    Subscription,
)

if TYPE_CHECKING:
    from streamstore.config import TransportConfig

__all__ = [
    "ConsumerDetails",
    "ConsumerSettings",
    "create_transport",
    "DeliveredMessage",
    "MessageHandler",
    "PubAck",
    "StoredMessage",
    "StreamDetails",
    "StreamSettings",
    "StreamTransport",
    "Subscription",
]


def create_transport(config: "TransportConfig") -> StreamTransport:
    """Create a transport instance based on configuration.

    Args:
        config: The transport configuration.

    Returns:
        An unconnected transport implementing the StreamTransport protocol.

    Raises:
        ValueError: If the engine is unknown or required config is missing.
    """
    engine = config.engine

    if engine == "nats":
        from streamstore.transport.jetstream import JetStreamTransport

        if not config.servers:
            raise ValueError("transport.servers is required when engine is 'nats'")
        return JetStreamTransport(
            servers=list(config.servers),
            name=config.name,
            connect_timeout=config.connect_timeout,
            request_timeout=config.request_timeout,
            api_prefix=config.api_prefix,
        )

    elif engine == "memory":
        from streamstore.transport.memory import MemoryTransport

        return MemoryTransport()

    else:
        raise ValueError(f"Unknown transport engine: {engine}")
