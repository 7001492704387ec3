"""Chunk writer: splits a source into chunk messages and commits the descriptor.

A put publishes every chunk (tagged with a freshly minted object id) with an
acknowledged publish, hashing as it goes, then commits the descriptor. If
anything fails before the descriptor publish is acknowledged, the chunks of
this attempt are deleted by sequence and the error is re-raised; the
previously committed version is untouched. The flush that follows the commit
is outside that window, since an acknowledged descriptor is already current.
After a successful commit the superseded version's chunks are handed to the
reclaimer.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterable, Awaitable, Callable, Iterable, Union

from streamstore import metrics
from streamstore.errors import TransportError
from streamstore.models import ObjectInfo, normalize_headers
from streamstore.objects.codec import OBJECT_ID_HEADER, chunk_subject, new_object_id, stream_name
from streamstore.objects.publisher import MetadataPublisher
from streamstore.objects.reclaimer import VersionReclaimer
from streamstore.transport.base import StreamTransport
from streamstore.validation import validate_chunk_size, validate_object_key

logger = logging.getLogger(__name__)

ChunkReader = Callable[[int], Awaitable[bytes]]

# Accepted put sources: bytes-like, str (UTF-8), objects with a sync or async
# read(n), and iterables or async iterables of bytes.
ObjectSource = Union[bytes, bytearray, memoryview, str, Any]


def chunk_reader(source: ObjectSource) -> ChunkReader:
    """Adapt a put source to an async ``read(n)`` returning at most n bytes.

    An empty result means end of data.

    Raises:
        TypeError: If the source is not a supported type.
    """
    if isinstance(source, str):
        source = source.encode("utf-8")
    if isinstance(source, (bytes, bytearray, memoryview)):
        return _bytes_reader(bytes(source))

    read = getattr(source, "read", None)
    if callable(read):
        if inspect.iscoroutinefunction(read):
            return read

        async def read_sync(n: int) -> bytes:
            return read(n)

        return read_sync

    if hasattr(source, "__aiter__"):
        return _regroup(source.__aiter__().__anext__, StopAsyncIteration)
    if isinstance(source, Iterable):
        it = iter(source)

        async def next_sync() -> bytes:
            return next(it)

        return _regroup(next_sync, StopIteration)

    raise TypeError(f"Unsupported object source: {type(source).__name__}")


def _bytes_reader(data: bytes) -> ChunkReader:
    view = memoryview(data)
    offset = 0

    async def read(n: int) -> bytes:
        nonlocal offset
        chunk = bytes(view[offset:offset + n])
        offset += len(chunk)
        return chunk

    return read


def _regroup(next_piece: Callable[[], Awaitable[bytes]], stop: type[Exception]) -> ChunkReader:
    """Turn a stream of arbitrarily sized pieces into reads of at most n bytes."""
    pending = bytearray()
    exhausted = False

    async def read(n: int) -> bytes:
        nonlocal exhausted
        while len(pending) < n and not exhausted:
            try:
                piece = await next_piece()
            except stop:
                exhausted = True
            else:
                pending.extend(piece)
        chunk = bytes(pending[:n])
        del pending[:n]
        return chunk

    return read


async def _read_full(read: ChunkReader, size: int) -> bytes:
    """Read until ``size`` bytes are collected or the source is exhausted."""
    data = await read(size)
    if len(data) >= size or not data:
        return data
    parts = [data]
    remaining = size - len(data)
    while remaining > 0:
        more = await read(remaining)
        if not more:
            break
        parts.append(more)
        remaining -= len(more)
    return b"".join(parts)


class ChunkWriter:
    """Writes object versions as chunk messages plus a committed descriptor.

    Attributes:
        transport: The stream transport.
        publisher: Commits and looks up descriptors.
        reclaimer: Removes chunks of superseded versions.
        chunk_size: Default chunk size in bytes.
    """

    def __init__(
        self,
        transport: StreamTransport,
        publisher: MetadataPublisher,
        reclaimer: VersionReclaimer,
        chunk_size: int,
    ) -> None:
        self.transport = transport
        self.publisher = publisher
        self.reclaimer = reclaimer
        self.chunk_size = validate_chunk_size(chunk_size)

    async def write(
        self,
        bucket: str,
        key: str,
        source: ObjectSource,
        description: str | None = None,
        headers: dict[str, Any] | None = None,
        chunk_size: int | None = None,
    ) -> ObjectInfo:
        """Store ``source`` as the new current version of ``key``.

        Args:
            bucket: The bucket name.
            key: The object key.
            source: The object content (see ``chunk_reader``).
            description: Optional description stored in the descriptor.
            headers: Optional user headers (values may be str or list of str).
            chunk_size: Override the default chunk size for this put.

        Returns:
            The committed descriptor.

        Raises:
            InvalidKey: If the key is not a valid object key.
            InvalidArgument: If the chunk size is not a positive integer.
            BucketNotFound: If the bucket does not exist.
            TransportError: If a chunk or descriptor publish fails.
        """
        validate_object_key(key)
        size_limit = self.chunk_size if chunk_size is None else validate_chunk_size(chunk_size)
        read = chunk_reader(source)

        previous = await self.publisher.lookup(bucket, key)
        object_id = new_object_id()
        subject = chunk_subject(bucket, key)
        published: list[int] = []
        log_extra = {"bucket": bucket, "key": key, "object_id": object_id}

        try:
            sha = hashlib.sha256()
            size = 0
            while True:
                chunk = await _read_full(read, size_limit)
                if not chunk:
                    break
                sha.update(chunk)
                ack = await self.transport.publish(
                    subject, chunk, headers={OBJECT_ID_HEADER: object_id}
                )
                published.append(ack.seq)
                size += len(chunk)
                metrics.record_chunk(len(chunk))

            info = ObjectInfo(
                bucket=bucket,
                name=key,
                id=object_id,
                size=size,
                chunks=len(published),
                digest=base64.urlsafe_b64encode(sha.digest()).decode(),
                description=description,
                headers=normalize_headers(headers or {}),
                mtime=datetime.now(timezone.utc),
            )
            await self.publisher.publish(info)
        except BaseException:
            await self._rollback(bucket, published, log_extra)
            raise

        # The descriptor is acknowledged and current from here on; its chunks
        # must never be rolled back.
        try:
            await self.transport.flush()
        except TransportError as exc:
            logger.warning(
                "Flush after committing %s/%s failed: %s", bucket, key, exc, extra=log_extra
            )

        logger.info(
            "Stored %s/%s (%d bytes, %d chunks)",
            bucket,
            key,
            info.size,
            info.chunks,
            extra={**log_extra, "size": info.size, "chunks": info.chunks},
        )

        if previous is not None:
            await self.reclaimer.reclaim(previous)
        return info

    async def _rollback(self, bucket: str, published: list[int], log_extra: dict) -> None:
        """Delete the chunks published by a failed attempt, best effort."""
        metrics.record_rollback()
        if not published:
            return
        stream = stream_name(bucket)
        try:
            await asyncio.shield(self._delete_all(stream, published))
        except Exception:
            logger.warning(
                "Rollback of %d chunks in %s incomplete",
                len(published),
                stream,
                exc_info=True,
                extra=log_extra,
            )
        else:
            logger.info(
                "Rolled back %d chunks in %s", len(published), stream, extra=log_extra
            )

    async def _delete_all(self, stream: str, seqs: list[int]) -> None:
        for seq in seqs:
            await self.transport.delete_msg(stream, seq)
