"""NATS JetStream transport for streamstore.

Maps the StreamTransport protocol onto a NATS server with JetStream enabled,
via nats-py. Stream and consumer administration go through the JetStream
management API; last-by-subject lookups use the raw ``STREAM.MSG.GET`` API
so the server-side message time is available.

Delivery subscriptions are plain core subscriptions on the consumer's
deliver subject. Flow-control requests and stalled-consumer heartbeats are
answered here, from inside the subscription callback, so they are only
acknowledged once every earlier message has been handed to the handler.
"""

import asyncio
import base64
import json
import logging
from contextlib import contextmanager
from typing import Iterator

import nats
from nats.errors import Error as NATSError
from nats.js import api
from nats.js.errors import APIError

from streamstore.errors import StreamAlreadyExists, StreamNotFound, TransportError
from streamstore.models import parse_rfc3339
from streamstore.transport.base import (
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

# JetStream API error codes
_ERR_NO_MESSAGE_FOUND = 10037
_ERR_STREAM_NAME_IN_USE = 10058
_ERR_STREAM_NOT_FOUND = 10059

_STATUS_HEADER = "Status"
_STATUS_CONTROL = "100"
_CONSUMER_STALLED_HEADER = "Nats-Consumer-Stalled"


def parse_headers(raw: bytes) -> dict[str, str]:
    """Parse a ``NATS/1.0`` header block into a dict.

    Args:
        raw: The header block, e.g. ``b"NATS/1.0\\r\\nNats-Rollup: sub\\r\\n\\r\\n"``.

    Returns:
        Header names mapped to their last value.
    """
    headers: dict[str, str] = {}
    if not raw:
        return headers
    lines = raw.decode("utf-8", errors="replace").split("\r\n")
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if sep and name.strip():
            headers[name.strip()] = value.strip()
    return headers


def _translate(exc: BaseException, stream: str = "") -> TransportError:
    """Convert a nats-py exception into a TransportError."""
    if isinstance(exc, APIError):
        if exc.err_code == _ERR_STREAM_NOT_FOUND:
            return StreamNotFound(stream)
        if exc.err_code == _ERR_STREAM_NAME_IN_USE:
            return StreamAlreadyExists(stream)
        return TransportError(
            f"{exc.description or 'JetStream API error'} "
            f"(code={exc.code}, err_code={exc.err_code})"
        )
    return TransportError(str(exc) or exc.__class__.__name__)


@contextmanager
def _translated(stream: str = "") -> Iterator[None]:
    """Re-raise nats-py and timeout errors as TransportError."""
    try:
        yield
    except (NATSError, asyncio.TimeoutError, OSError) as exc:
        raise _translate(exc, stream) from exc


class _JetStreamSubscription:
    """Wraps a nats-py subscription."""

    def __init__(self, sub) -> None:
        self._sub = sub

    async def unsubscribe(self) -> None:
        with _translated():
            await self._sub.unsubscribe()


class JetStreamTransport:
    """Stream transport backed by a NATS JetStream server.

    Attributes:
        servers: NATS server URLs.
        name: Client connection name.
        connect_timeout: Seconds to wait for the initial connection.
        request_timeout: Seconds to wait for JetStream API responses.
        api_prefix: JetStream API subject prefix.
    """

    def __init__(
        self,
        servers: list[str] | None = None,
        name: str = "streamstore",
        connect_timeout: float = 2.0,
        request_timeout: float = 5.0,
        api_prefix: str = "$JS.API",
    ) -> None:
        self.servers = servers or ["nats://127.0.0.1:4222"]
        self.name = name
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self.api_prefix = api_prefix
        self._nc = None
        self._js = None

    # -- Lifecycle -------------------------------------------------------------

    async def connect(self) -> None:
        """Connect to NATS and open a JetStream context.

        Raises:
            TransportError: If no server could be reached.
        """
        with _translated():
            self._nc = await nats.connect(
                servers=self.servers,
                name=self.name,
                connect_timeout=self.connect_timeout,
                error_cb=self._on_error,
                disconnected_cb=self._on_disconnected,
                reconnected_cb=self._on_reconnected,
            )
        self._js = self._nc.jetstream(prefix=self.api_prefix, timeout=self.request_timeout)
        logger.info("Connected to NATS at %s", self._nc.connected_url.netloc)

    async def close(self) -> None:
        if self._nc is not None and not self._nc.is_closed:
            await self._nc.close()
            logger.info("NATS connection closed")
        self._nc = None
        self._js = None

    async def _on_error(self, exc: Exception) -> None:
        logger.warning("NATS client error: %s", exc)

    async def _on_disconnected(self) -> None:
        logger.warning("Disconnected from NATS")

    async def _on_reconnected(self) -> None:
        logger.info("Reconnected to NATS")

    @property
    def nc(self):
        if self._nc is None:
            raise TransportError("Transport is not connected")
        return self._nc

    @property
    def js(self):
        if self._js is None:
            raise TransportError("Transport is not connected")
        return self._js

    # -- Streams ---------------------------------------------------------------

    @staticmethod
    def _details(info) -> StreamDetails:
        config = info.config
        storage = config.storage.value if config.storage is not None else "file"
        return StreamDetails(
            name=config.name,
            subjects=list(config.subjects or []),
            description=config.description or "",
            max_age=config.max_age or None,
            storage=storage,
            replicas=config.num_replicas or 1,
            messages=info.state.messages if info.state else 0,
            bytes=info.state.bytes if info.state else 0,
        )

    async def create_stream(self, settings: StreamSettings) -> StreamDetails:
        config = api.StreamConfig(
            name=settings.name,
            description=settings.description or None,
            subjects=list(settings.subjects),
            max_age=settings.max_age,
            storage=api.StorageType.MEMORY if settings.storage == "memory" else api.StorageType.FILE,
            num_replicas=settings.replicas,
            discard=api.DiscardPolicy.NEW if settings.discard_new else api.DiscardPolicy.OLD,
            allow_rollup_hdrs=settings.allow_rollup,
            max_msgs=settings.max_msgs,
            max_bytes=settings.max_bytes,
        )
        with _translated(settings.name):
            info = await self.js.add_stream(config)
        return self._details(info)

    async def delete_stream(self, name: str) -> bool:
        with _translated(name):
            return await self.js.delete_stream(name)

    async def stream_info(self, name: str) -> StreamDetails | None:
        try:
            with _translated(name):
                info = await self.js.stream_info(name)
        except StreamNotFound:
            return None
        return self._details(info)

    # -- Messages --------------------------------------------------------------

    async def publish(
        self, subject: str, data: bytes, headers: dict[str, str] | None = None
    ) -> PubAck:
        with _translated():
            ack = await self.js.publish(subject, data, headers=headers or None)
        return PubAck(stream=ack.stream, seq=ack.seq)

    async def get_last_msg(self, stream: str, subject: str) -> StoredMessage | None:
        request = json.dumps({"last_by_subj": subject}).encode()
        with _translated(stream):
            resp = await self.nc.request(
                f"{self.api_prefix}.STREAM.MSG.GET.{stream}",
                request,
                timeout=self.request_timeout,
            )

        try:
            body = json.loads(resp.data)
        except json.JSONDecodeError as exc:
            raise TransportError(f"Invalid JetStream API response: {exc}") from exc

        error = body.get("error")
        if error:
            err_code = error.get("err_code")
            if err_code == _ERR_NO_MESSAGE_FOUND:
                return None
            if err_code == _ERR_STREAM_NOT_FOUND:
                raise StreamNotFound(stream)
            raise TransportError(
                f"{error.get('description', 'JetStream API error')} "
                f"(code={error.get('code')}, err_code={err_code})"
            )

        message = body["message"]
        return StoredMessage(
            subject=message["subject"],
            seq=int(message["seq"]),
            data=base64.b64decode(message.get("data") or b""),
            headers=parse_headers(base64.b64decode(message.get("hdrs") or b"")),
            time=parse_rfc3339(message["time"]),
        )

    async def purge(
        self, stream: str, subject: str | None = None, before_seq: int | None = None
    ) -> None:
        with _translated(stream):
            await self.js.purge_stream(stream, seq=before_seq, subject=subject)

    async def delete_msg(self, stream: str, seq: int) -> bool:
        with _translated(stream):
            return await self.js.delete_msg(stream, seq)

    # -- Consumers and subscriptions -------------------------------------------

    async def subscribe(self, subject: str, handler: MessageHandler) -> _JetStreamSubscription:
        async def callback(msg) -> None:
            await self._dispatch(msg, handler)

        with _translated():
            sub = await self.nc.subscribe(subject, cb=callback)
        return _JetStreamSubscription(sub)

    async def _dispatch(self, msg, handler: MessageHandler) -> None:
        """Answer control messages; translate and forward everything else."""
        headers = dict(msg.headers or {})
        if headers.get(_STATUS_HEADER) == _STATUS_CONTROL and not msg.data:
            # Flow-control requests carry a reply subject; idle heartbeats may
            # carry a stalled-consumer subject. Both expect an empty reply.
            if msg.reply:
                await self.nc.publish(msg.reply, b"")
            stalled = headers.get(_CONSUMER_STALLED_HEADER)
            if stalled:
                await self.nc.publish(stalled, b"")
            return

        try:
            meta = msg.metadata
        except NATSError:
            logger.warning("Dropping non-JetStream message on %s", msg.subject)
            return

        await handler(
            DeliveredMessage(
                subject=msg.subject,
                data=msg.data,
                headers=headers,
                stream_seq=meta.sequence.stream,
                num_pending=meta.num_pending,
            )
        )

    async def add_consumer(self, stream: str, settings: ConsumerSettings) -> ConsumerDetails:
        config = api.ConsumerConfig(
            deliver_subject=settings.deliver_subject,
            filter_subject=settings.filter_subject,
            deliver_policy=api.DeliverPolicy.ALL,
            ack_policy=api.AckPolicy.NONE,
            max_deliver=settings.max_deliver,
            flow_control=settings.flow_control,
            idle_heartbeat=settings.idle_heartbeat,
            headers_only=settings.headers_only or None,
        )
        with _translated(stream):
            info = await self.js.add_consumer(stream, config)
        return ConsumerDetails(stream=stream, name=info.name, num_pending=info.num_pending or 0)

    async def delete_consumer(self, stream: str, name: str) -> bool:
        with _translated(stream):
            return await self.js.delete_consumer(stream, name)

    async def flush(self) -> None:
        with _translated():
            await self.nc.flush(timeout=self.request_timeout)
