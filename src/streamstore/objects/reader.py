"""Object reader: streams an object's chunks back to the caller.

A read resolves the current descriptor, then opens an ephemeral push consumer
filtered to the chunk subject of the descriptor's key. Chunks are buffered in
a bounded queue; when the queue is full the delivery callback blocks, which in
turn holds back flow-control replies and pauses the server. Chunks tagged with
another version's ``Obj-Id`` (a concurrent or superseded put) are skipped.

The consumer and subscription are released when the last chunk arrives, or
when the caller closes the stream early.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
from typing import Awaitable, Callable

from streamstore import metrics
from streamstore.errors import IntegrityError, TransportError
from streamstore.models import ObjectInfo
from streamstore.objects.codec import (
    OBJECT_ID_HEADER,
    chunk_subject,
    deliver_subject,
    stream_name,
)
from streamstore.objects.publisher import MetadataPublisher
from streamstore.transport.base import ConsumerSettings, DeliveredMessage, StreamTransport

logger = logging.getLogger(__name__)

# End-of-data marker placed on the chunk queue.
_EOF = object()


class ObjectStream:
    """Readable async byte stream over one object version.

    Supports ``read(n)``, ``async for`` over chunks, and ``async with``.
    Always close the stream (or read it to the end) so the server-side
    consumer is released.

    Attributes:
        info: The descriptor of the version being read.
    """

    def __init__(self, info: ObjectInfo, buffer_chunks: int = 8, verify: bool = False) -> None:
        self.info = info
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_chunks)
        self._buffer = bytearray()
        self._eof = False
        self._error: BaseException | None = None
        self._closed = False
        self._finished = False
        self._release: Callable[[], Awaitable[None]] | None = None
        self._release_task: asyncio.Task[None] | None = None
        self._sha = hashlib.sha256() if verify else None
        self._received_chunks = 0
        self._received_bytes = 0

    @property
    def closed(self) -> bool:
        return self._closed

    # -- Delivery side -----------------------------------------------------------

    async def _feed(self, data: bytes) -> None:
        """Queue one chunk; blocks while the buffer is full."""
        if self._closed or self._finished:
            return
        self._received_chunks += 1
        self._received_bytes += len(data)
        if self._sha is not None:
            self._sha.update(data)
        await self._queue.put(data)

    async def _finish(self) -> None:
        """Mark delivery complete and release the consumer."""
        if self._finished:
            return
        self._finished = True
        if not self._closed:
            await self._queue.put(self._verify_error() or _EOF)
        self._schedule_release()

    def _attach_release(self, release: Callable[[], Awaitable[None]]) -> None:
        """Register the coroutine that tears down the consumer and subscription."""
        self._release = release
        if self._finished or self._closed:
            self._schedule_release()

    def _schedule_release(self) -> None:
        # Runs in its own task: unsubscribing from inside the delivery
        # callback would cancel the callback itself.
        release, self._release = self._release, None
        if release is not None:
            self._release_task = asyncio.create_task(release())

    def _verify_error(self) -> IntegrityError | None:
        if self._sha is None:
            return None
        info = self.info
        if self._received_chunks != info.chunks:
            return IntegrityError(
                f"Received {self._received_chunks} of {info.chunks} chunks "
                f"for {info.bucket}/{info.name}"
            )
        if self._received_bytes != info.size:
            return IntegrityError(
                f"Received {self._received_bytes} of {info.size} bytes "
                f"for {info.bucket}/{info.name}"
            )
        digest = base64.urlsafe_b64encode(self._sha.digest()).decode()
        if digest != info.digest:
            return IntegrityError(f"Digest mismatch for {info.bucket}/{info.name}")
        return None

    # -- Caller side -------------------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("I/O operation on closed object stream")
        if self._error is not None:
            raise self._error

    async def _pull(self) -> None:
        item = await self._queue.get()
        if item is _EOF:
            self._eof = True
        elif isinstance(item, BaseException):
            self._eof = True
            self._error = item
        else:
            self._buffer += item
            return
        if self._release_task is not None:
            await self._release_task
        if self._error is not None:
            raise self._error

    async def read(self, n: int = -1) -> bytes:
        """Read up to ``n`` bytes, or everything remaining if ``n`` is negative.

        Returns as soon as any data is available, so a short result does not
        mean end of data; an empty result does, except for ``read(0)``, which
        always returns empty without touching the stream.

        Raises:
            IntegrityError: If verification was requested and the received
                data does not match the descriptor.
            ValueError: If the stream is closed.
        """
        self._check_open()
        if n == 0:
            return b""
        if n < 0:
            while not self._eof:
                await self._pull()
            data = bytes(self._buffer)
            self._buffer.clear()
        else:
            while not self._buffer and not self._eof:
                await self._pull()
            data = bytes(self._buffer[:n])
            del self._buffer[:n]
        metrics.record_bytes_read(len(data))
        return data

    async def readall(self) -> bytes:
        return await self.read()

    def __aiter__(self) -> ObjectStream:
        return self

    async def __anext__(self) -> bytes:
        self._check_open()
        while not self._buffer and not self._eof:
            await self._pull()
        if not self._buffer:
            raise StopAsyncIteration
        data = bytes(self._buffer)
        self._buffer.clear()
        metrics.record_bytes_read(len(data))
        return data

    async def aclose(self) -> None:
        """Stop reading and release the consumer. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()
        # Unblock a delivery callback waiting on a full queue.
        while not self._queue.empty():
            self._queue.get_nowait()
        self._schedule_release()
        if self._release_task is not None:
            await self._release_task

    async def __aenter__(self) -> ObjectStream:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class ObjectReader:
    """Opens object streams over the chunks of the current version.

    Attributes:
        transport: The stream transport.
        publisher: Resolves descriptors.
        heartbeat_interval: Idle heartbeat for read consumers, in seconds.
        buffer_chunks: Chunks buffered ahead of the caller.
    """

    def __init__(
        self,
        transport: StreamTransport,
        publisher: MetadataPublisher,
        heartbeat_interval: float = 5.0,
        buffer_chunks: int = 8,
    ) -> None:
        self.transport = transport
        self.publisher = publisher
        self.heartbeat_interval = heartbeat_interval
        self.buffer_chunks = buffer_chunks

    async def open(self, bucket: str, key: str, verify: bool = False) -> ObjectStream | None:
        """Open a stream over the current version of a key.

        Args:
            bucket: The bucket name.
            key: The object key.
            verify: Check chunk count, size and digest at end of data.

        Returns:
            An ObjectStream, or None if the key does not exist.

        Raises:
            BucketNotFound: If the bucket does not exist.
            TransportError: If the consumer cannot be created.
        """
        info = await self.publisher.lookup(bucket, key)
        if info is None:
            return None

        stream = ObjectStream(info, buffer_chunks=self.buffer_chunks, verify=verify)
        if info.chunks == 0:
            await stream._finish()
            return stream

        await self._attach(stream)
        return stream

    async def _attach(self, stream: ObjectStream) -> None:
        info = stream.info
        name = stream_name(info.bucket)
        deliver = deliver_subject(info.bucket, info.name)

        async def on_message(msg: DeliveredMessage) -> None:
            tag = msg.headers.get(OBJECT_ID_HEADER)
            if tag is None or tag == info.id:
                await stream._feed(msg.data)
            if msg.num_pending == 0:
                await stream._finish()

        sub = await self.transport.subscribe(deliver, on_message)
        try:
            consumer = await self.transport.add_consumer(
                name,
                ConsumerSettings(
                    deliver_subject=deliver,
                    filter_subject=chunk_subject(info.bucket, info.name),
                    idle_heartbeat=self.heartbeat_interval,
                ),
            )
        except Exception:
            await _quietly(sub.unsubscribe(), f"unsubscribe from {deliver}")
            raise

        async def release() -> None:
            await _quietly(
                self.transport.delete_consumer(name, consumer.name),
                f"delete read consumer {consumer.name}",
            )
            await _quietly(sub.unsubscribe(), f"unsubscribe from {deliver}")

        stream._attach_release(release)
        if consumer.num_pending == 0:
            await stream._finish()
        logger.debug(
            "Opened read consumer %s for %s/%s",
            consumer.name,
            info.bucket,
            info.name,
            extra={"bucket": info.bucket, "key": info.name, "object_id": info.id},
        )


async def _quietly(aw: Awaitable[object], action: str) -> None:
    """Await a cleanup step, logging transport failures instead of raising."""
    try:
        await aw
    except TransportError as exc:
        logger.warning("Failed to %s: %s", action, exc)
