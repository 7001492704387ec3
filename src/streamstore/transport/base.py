"""Abstract message-stream transport protocol for streamstore.

The object protocol needs a small slice of a JetStream-style service:
acknowledged publish with per-subject rollup, last-message-by-subject lookup,
purge and single-message delete, and ephemeral push consumers with flow
control. This module defines that slice and the value types that cross it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Protocol

# Header names understood by the stream service.
ROLLUP_HEADER = "Nats-Rollup"
ROLLUP_SUBJECT = "sub"
MSG_SIZE_HEADER = "Nats-Msg-Size"


@dataclass
class StreamSettings:
    """Configuration for creating a stream.

    Attributes:
        name: Stream name.
        subjects: Subjects (wildcards allowed) captured by the stream.
        description: Free-text description.
        max_age: Maximum message age in seconds, or None for no limit.
        storage: ``"file"`` or ``"memory"``.
        replicas: Replica count, or None for the server default.
        discard_new: Reject new messages when limits are reached instead of
            discarding old ones.
        allow_rollup: Honour ``Nats-Rollup`` headers.
        max_msgs: Message limit (-1 for unlimited).
        max_bytes: Byte limit (-1 for unlimited).
    """

    name: str
    subjects: list[str]
    description: str = ""
    max_age: float | None = None
    storage: str = "file"
    replicas: int | None = None
    discard_new: bool = True
    allow_rollup: bool = True
    max_msgs: int = -1
    max_bytes: int = -1


@dataclass
class StreamDetails:
    """Configuration and state of an existing stream."""

    name: str
    subjects: list[str] = field(default_factory=list)
    description: str = ""
    max_age: float | None = None
    storage: str = "file"
    replicas: int = 1
    messages: int = 0
    bytes: int = 0


@dataclass
class PubAck:
    """Acknowledgment of a stored message."""

    stream: str
    seq: int


@dataclass
class StoredMessage:
    """A message fetched directly from a stream.

    Attributes:
        subject: The message subject.
        seq: Stream sequence number.
        data: Payload bytes.
        headers: Message headers.
        time: Server-side time the message was stored.
    """

    subject: str
    seq: int
    data: bytes
    headers: dict[str, str]
    time: datetime


@dataclass
class DeliveredMessage:
    """A message pushed to a subscription by a consumer.

    Attributes:
        subject: The original (stream) subject of the message.
        data: Payload bytes (empty for headers-only consumers).
        headers: Message headers.
        stream_seq: Stream sequence number of the message.
        num_pending: Messages still pending for the consumer after this one.
    """

    subject: str
    data: bytes
    headers: dict[str, str]
    stream_seq: int
    num_pending: int


@dataclass
class ConsumerSettings:
    """Configuration for an ephemeral push consumer.

    Attributes:
        deliver_subject: Subject the consumer pushes messages to.
        filter_subject: Only messages on this subject are delivered.
        flow_control: Pace delivery against subscriber progress.
        idle_heartbeat: Heartbeat interval in seconds (required for flow control).
        max_deliver: Maximum delivery attempts per message.
        headers_only: Deliver headers without payloads.
    """

    deliver_subject: str
    filter_subject: str
    flow_control: bool = True
    idle_heartbeat: float = 5.0
    max_deliver: int = 1
    headers_only: bool = False


@dataclass
class ConsumerDetails:
    """A created consumer."""

    stream: str
    name: str
    num_pending: int = 0


MessageHandler = Callable[[DeliveredMessage], Awaitable[None]]


class Subscription(Protocol):
    """Handle to an active subscription."""

    async def unsubscribe(self) -> None:
        """Stop receiving messages."""
        ...


class StreamTransport(Protocol):
    """Protocol defining the message-stream service interface.

    All transports (JetStream, in-memory) must implement this interface.
    Failures of the underlying service are raised as ``TransportError``;
    a missing stream is raised as ``StreamNotFound``.
    """

    async def connect(self) -> None:
        """Open the connection to the stream service."""
        ...

    async def close(self) -> None:
        """Close the connection and stop all deliveries."""
        ...

    async def create_stream(self, settings: StreamSettings) -> StreamDetails:
        """Create a stream.

        Args:
            settings: The stream configuration.

        Returns:
            The created stream's details.
        """
        ...

    async def delete_stream(self, name: str) -> bool:
        """Delete a stream and every message in it.

        Args:
            name: The stream name.

        Returns:
            True if the stream was deleted.
        """
        ...

    async def stream_info(self, name: str) -> StreamDetails | None:
        """Look up a stream.

        Args:
            name: The stream name.

        Returns:
            The stream's details, or None if it does not exist.
        """
        ...

    async def publish(
        self, subject: str, data: bytes, headers: dict[str, str] | None = None
    ) -> PubAck:
        """Publish a message and wait for the stream's acknowledgment.

        Args:
            subject: The subject to publish on.
            data: Payload bytes.
            headers: Optional message headers.

        Returns:
            The stream name and sequence number assigned to the message.
        """
        ...

    async def get_last_msg(self, stream: str, subject: str) -> StoredMessage | None:
        """Fetch the most recent message stored on a subject.

        Args:
            stream: The stream name.
            subject: The exact subject.

        Returns:
            The stored message, or None if the subject holds no messages.
        """
        ...

    async def purge(
        self, stream: str, subject: str | None = None, before_seq: int | None = None
    ) -> None:
        """Remove messages from a stream.

        Args:
            stream: The stream name.
            subject: Only purge messages on this subject (all subjects if None).
            before_seq: Only purge messages with a lower sequence number.
        """
        ...

    async def delete_msg(self, stream: str, seq: int) -> bool:
        """Remove a single message.

        Args:
            stream: The stream name.
            seq: The sequence number to remove.

        Returns:
            True if a message was removed.
        """
        ...

    async def subscribe(self, subject: str, handler: MessageHandler) -> Subscription:
        """Subscribe to a delivery subject.

        The handler is awaited for each message in order; the next message is
        not handed over until the previous call returns.

        Args:
            subject: The subject to receive on.
            handler: Coroutine function called with each delivered message.

        Returns:
            A subscription handle.
        """
        ...

    async def add_consumer(self, stream: str, settings: ConsumerSettings) -> ConsumerDetails:
        """Create an ephemeral push consumer.

        Args:
            stream: The stream to consume from.
            settings: The consumer configuration.

        Returns:
            The consumer's name and its initial pending count.
        """
        ...

    async def delete_consumer(self, stream: str, name: str) -> bool:
        """Delete a consumer.

        Args:
            stream: The stream name.
            name: The consumer name.

        Returns:
            True if the consumer was deleted.
        """
        ...

    async def flush(self) -> None:
        """Wait until everything sent so far has been processed by the server."""
        ...
