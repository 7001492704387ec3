"""In-memory message-stream transport for streamstore.

Implements the StreamTransport protocol inside the process, emulating the
JetStream behaviour the object protocol depends on:

    - Streams capture subjects by pattern (``*`` and ``>`` wildcards) and
      assign increasing sequence numbers.
    - ``Nats-Rollup: sub`` replaces every earlier message on the subject.
    - Discard-new limits (max_msgs, max_bytes) reject publishes.
    - Messages older than max_age expire.
    - Ephemeral push consumers deliver matching messages in sequence order,
      once each, with an accurate pending count. Delivery awaits the
      subscriber's handler, so a slow subscriber slows delivery (the
      in-process analogue of flow control).

Nothing is persisted; all data is lost on close.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone

from streamstore.errors import StreamAlreadyExists, StreamNotFound, TransportError
from streamstore.transport.base import (
    MSG_SIZE_HEADER,
    ROLLUP_HEADER,
    ConsumerDetails,
    ConsumerSettings,
    DeliveredMessage,
    MessageHandler,
    PubAck,
    StoredMessage,
    StreamDetails,
    StreamSettings,
)

logger = logging.getLogger(__name__)


def subject_matches(pattern: str, subject: str) -> bool:
    """Return True if ``subject`` is matched by ``pattern``.

    ``*`` matches exactly one token, a trailing ``>`` matches one or more.
    """
    p_tokens = pattern.split(".")
    s_tokens = subject.split(".")
    for i, token in enumerate(p_tokens):
        if token == ">":
            return len(s_tokens) > i
        if i >= len(s_tokens):
            return False
        if token != "*" and token != s_tokens[i]:
            return False
    return len(p_tokens) == len(s_tokens)


class _MemoryStream:
    """A single stream: settings plus messages keyed by sequence."""

    def __init__(self, settings: StreamSettings) -> None:
        self.settings = settings
        # seq -> message, in ascending sequence order
        self.messages: dict[int, StoredMessage] = {}
        self.last_seq = 0
        self.bytes = 0
        self.consumers: dict[str, "_MemoryConsumer"] = {}

    def captures(self, subject: str) -> bool:
        return any(subject_matches(p, subject) for p in self.settings.subjects)

    def expire(self) -> None:
        """Drop messages older than max_age."""
        if not self.settings.max_age:
            return
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.settings.max_age)
        for seq in [s for s, m in self.messages.items() if m.time < cutoff]:
            self.remove(seq)

    def remove(self, seq: int) -> bool:
        msg = self.messages.pop(seq, None)
        if msg is None:
            return False
        self.bytes -= len(msg.data)
        return True

    def append(self, subject: str, data: bytes, headers: dict[str, str]) -> StoredMessage:
        self.last_seq += 1
        msg = StoredMessage(
            subject=subject,
            seq=self.last_seq,
            data=bytes(data),
            headers=dict(headers),
            time=datetime.now(timezone.utc),
        )
        self.messages[msg.seq] = msg
        self.bytes += len(msg.data)
        for consumer in self.consumers.values():
            consumer.wake()
        return msg

    def next_matching(self, after_seq: int, filter_subject: str) -> StoredMessage | None:
        for seq, msg in self.messages.items():
            if seq > after_seq and subject_matches(filter_subject, msg.subject):
                return msg
        return None

    def count_matching(self, after_seq: int, filter_subject: str) -> int:
        return sum(
            1
            for seq, msg in self.messages.items()
            if seq > after_seq and subject_matches(filter_subject, msg.subject)
        )

    def details(self) -> StreamDetails:
        s = self.settings
        return StreamDetails(
            name=s.name,
            subjects=list(s.subjects),
            description=s.description,
            max_age=s.max_age,
            storage=s.storage,
            replicas=s.replicas or 1,
            messages=len(self.messages),
            bytes=self.bytes,
        )


class _MemorySubscription:
    """Subscription handle returned by MemoryTransport.subscribe()."""

    def __init__(self, transport: "MemoryTransport", subject: str, handler: MessageHandler) -> None:
        self._transport = transport
        self.subject = subject
        self.handler = handler

    async def unsubscribe(self) -> None:
        self._transport._remove_subscription(self)


class _MemoryConsumer:
    """Ephemeral push consumer driven by a background delivery task."""

    def __init__(
        self,
        transport: "MemoryTransport",
        stream: _MemoryStream,
        name: str,
        settings: ConsumerSettings,
    ) -> None:
        self._transport = transport
        self._stream = stream
        self.name = name
        self.settings = settings
        self._position = 0
        self._stopped = False
        self._wakeup = asyncio.Event()
        self.task: asyncio.Task[None] | None = None

    def start(self) -> None:
        self.task = asyncio.create_task(self._run(), name=f"memory-consumer-{self.name}")

    def wake(self) -> None:
        self._wakeup.set()

    def stop(self) -> None:
        """Stop delivering. Safe to call from inside the delivery task."""
        self._stopped = True
        self._wakeup.set()

    async def _run(self) -> None:
        filter_subject = self.settings.filter_subject
        while not self._stopped:
            self._stream.expire()
            msg = self._stream.next_matching(self._position, filter_subject)
            if msg is None:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            self._position = msg.seq
            headers = dict(msg.headers)
            data = msg.data
            if self.settings.headers_only:
                headers[MSG_SIZE_HEADER] = str(len(msg.data))
                data = b""
            delivered = DeliveredMessage(
                subject=msg.subject,
                data=data,
                headers=headers,
                stream_seq=msg.seq,
                num_pending=self._stream.count_matching(msg.seq, filter_subject),
            )
            await self._transport._deliver(self.settings.deliver_subject, delivered)


class MemoryTransport:
    """Stream transport that keeps every stream in process memory.

    Useful for tests and single-process deployments. Supports the subset of
    JetStream semantics documented in the module docstring.
    """

    def __init__(self) -> None:
        self._streams: dict[str, _MemoryStream] = {}
        self._subscriptions: dict[str, list[_MemorySubscription]] = {}
        self._connected = False

    # -- Lifecycle -------------------------------------------------------------

    async def connect(self) -> None:
        self._connected = True
        logger.info("Memory transport connected")

    async def close(self) -> None:
        """Stop every consumer and drop all streams and subscriptions."""
        tasks = []
        for stream in self._streams.values():
            for consumer in stream.consumers.values():
                consumer.stop()
                if consumer.task is not None:
                    consumer.task.cancel()
                    tasks.append(consumer.task)
            stream.consumers.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._streams.clear()
        self._subscriptions.clear()
        self._connected = False
        logger.info("Memory transport closed")

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise TransportError("Transport is not connected")

    def _get_stream(self, name: str) -> _MemoryStream:
        self._ensure_connected()
        stream = self._streams.get(name)
        if stream is None:
            raise StreamNotFound(name)
        stream.expire()
        return stream

    # -- Streams ---------------------------------------------------------------

    async def create_stream(self, settings: StreamSettings) -> StreamDetails:
        self._ensure_connected()
        existing = self._streams.get(settings.name)
        if existing is not None:
            if existing.settings != settings:
                raise StreamAlreadyExists(settings.name)
            return existing.details()
        for other in self._streams.values():
            for subject in settings.subjects:
                if any(subject_matches(p, subject) or subject_matches(subject, p)
                       for p in other.settings.subjects):
                    raise TransportError(f"Subjects overlap with stream {other.settings.name}")
        stream = _MemoryStream(settings)
        self._streams[settings.name] = stream
        return stream.details()

    async def delete_stream(self, name: str) -> bool:
        stream = self._get_stream(name)
        for consumer in stream.consumers.values():
            consumer.stop()
        stream.consumers.clear()
        del self._streams[name]
        return True

    async def stream_info(self, name: str) -> StreamDetails | None:
        self._ensure_connected()
        stream = self._streams.get(name)
        if stream is None:
            return None
        stream.expire()
        return stream.details()

    # -- Messages --------------------------------------------------------------

    async def publish(
        self, subject: str, data: bytes, headers: dict[str, str] | None = None
    ) -> PubAck:
        self._ensure_connected()
        stream = next((s for s in self._streams.values() if s.captures(subject)), None)
        if stream is None:
            raise TransportError(f"No stream captures subject {subject}")
        stream.expire()
        headers = dict(headers or {})

        rollup = headers.get(ROLLUP_HEADER)
        replaced: list[int] = []
        if rollup is not None:
            if not stream.settings.allow_rollup:
                raise TransportError("Rollup not permitted on this stream")
            if rollup == "sub":
                replaced = [s for s, m in stream.messages.items() if m.subject == subject]
            elif rollup == "all":
                replaced = list(stream.messages)
            else:
                raise TransportError(f"Invalid rollup value: {rollup}")

        settings = stream.settings
        if settings.discard_new:
            kept_bytes = stream.bytes - sum(len(stream.messages[s].data) for s in replaced)
            kept_msgs = len(stream.messages) - len(replaced)
            if settings.max_msgs >= 0 and kept_msgs + 1 > settings.max_msgs:
                raise TransportError("Maximum messages exceeded")
            if settings.max_bytes >= 0 and kept_bytes + len(data) > settings.max_bytes:
                raise TransportError("Maximum bytes exceeded")

        msg = stream.append(subject, data, headers)
        for seq in replaced:
            stream.remove(seq)

        if not settings.discard_new:
            while settings.max_msgs >= 0 and len(stream.messages) > settings.max_msgs:
                stream.remove(next(iter(stream.messages)))
            while settings.max_bytes >= 0 and stream.bytes > settings.max_bytes:
                stream.remove(next(iter(stream.messages)))

        # Let consumers and concurrent writers run between publishes.
        await asyncio.sleep(0)
        return PubAck(stream=settings.name, seq=msg.seq)

    async def get_last_msg(self, stream: str, subject: str) -> StoredMessage | None:
        s = self._get_stream(stream)
        for msg in reversed(list(s.messages.values())):
            if msg.subject == subject:
                return StoredMessage(
                    subject=msg.subject,
                    seq=msg.seq,
                    data=msg.data,
                    headers=dict(msg.headers),
                    time=msg.time,
                )
        return None

    async def purge(
        self, stream: str, subject: str | None = None, before_seq: int | None = None
    ) -> None:
        s = self._get_stream(stream)
        doomed = [
            seq
            for seq, msg in s.messages.items()
            if (subject is None or subject_matches(subject, msg.subject))
            and (before_seq is None or seq < before_seq)
        ]
        for seq in doomed:
            s.remove(seq)

    async def delete_msg(self, stream: str, seq: int) -> bool:
        return self._get_stream(stream).remove(seq)

    def stored_messages(self, stream: str, subject: str | None = None) -> list[StoredMessage]:
        """Return the messages currently held by a stream, oldest first.

        Args:
            stream: The stream name.
            subject: Only return messages matched by this subject pattern.
        """
        s = self._get_stream(stream)
        return [
            m for m in s.messages.values() if subject is None or subject_matches(subject, m.subject)
        ]

    # -- Consumers and subscriptions -------------------------------------------

    async def subscribe(self, subject: str, handler: MessageHandler) -> _MemorySubscription:
        self._ensure_connected()
        sub = _MemorySubscription(self, subject, handler)
        self._subscriptions.setdefault(subject, []).append(sub)
        return sub

    def _remove_subscription(self, sub: _MemorySubscription) -> None:
        subs = self._subscriptions.get(sub.subject, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop(sub.subject, None)

    async def _deliver(self, subject: str, msg: DeliveredMessage) -> None:
        """Hand a message to every subscription on a delivery subject, in turn."""
        for sub in list(self._subscriptions.get(subject, [])):
            try:
                await sub.handler(msg)
            except Exception:
                logger.exception("Subscription handler failed on %s", subject)

    async def add_consumer(self, stream: str, settings: ConsumerSettings) -> ConsumerDetails:
        s = self._get_stream(stream)
        if settings.flow_control and settings.idle_heartbeat <= 0:
            raise TransportError("Flow control requires an idle heartbeat")
        name = uuid.uuid4().hex[:22]
        consumer = _MemoryConsumer(self, s, name, settings)
        s.consumers[name] = consumer
        num_pending = s.count_matching(0, settings.filter_subject)
        consumer.start()
        return ConsumerDetails(stream=stream, name=name, num_pending=num_pending)

    async def delete_consumer(self, stream: str, name: str) -> bool:
        s = self._get_stream(stream)
        consumer = s.consumers.pop(name, None)
        if consumer is None:
            return False
        consumer.stop()
        return True

    def consumer_count(self, stream: str) -> int:
        """Return the number of live consumers on a stream."""
        return len(self._get_stream(stream).consumers)

    async def flush(self) -> None:
        self._ensure_connected()
        await asyncio.sleep(0)
