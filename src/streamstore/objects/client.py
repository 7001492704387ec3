"""Object store client and bucket handles.

``ObjectStoreClient`` wires the protocol components (writer, publisher,
reclaimer, reader) around one connected transport and exposes the bucket and
object operations. A ``Bucket`` is a thin handle that forwards to the client
with its name bound.
"""

from __future__ import annotations

import logging
from typing import Any

from streamstore import metrics
from streamstore.config import DEFAULT_CHUNK_SIZE
from streamstore.errors import (
    BucketAlreadyExists,
    BucketNotFound,
    KeyNotFound,
    StreamAlreadyExists,
    StreamNotFound,
)
from streamstore.models import BucketInfo, ObjectInfo
from streamstore.objects.codec import bucket_from_stream, stream_name, stream_subjects
from streamstore.objects.publisher import MetadataPublisher
from streamstore.objects.reader import ObjectReader, ObjectStream
from streamstore.objects.reclaimer import VersionReclaimer
from streamstore.objects.writer import ChunkWriter, ObjectSource
from streamstore.transport.base import StreamDetails, StreamSettings, StreamTransport
from streamstore.validation import validate_bucket_name

logger = logging.getLogger(__name__)


class ObjectStoreClient:
    """Bucket administration and object transfer over a stream transport.

    The transport must already be connected; the client does not own it.

    Attributes:
        transport: The stream transport.
        verify_reads: Default for ``get(..., verify=None)``.
    """

    def __init__(
        self,
        transport: StreamTransport,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        read_buffer_chunks: int = 8,
        heartbeat_interval: float = 5.0,
        reclaim_timeout: float = 30.0,
        verify_reads: bool = False,
    ) -> None:
        self.transport = transport
        self.verify_reads = verify_reads
        self.publisher = MetadataPublisher(transport)
        self.reclaimer = VersionReclaimer(
            transport, heartbeat_interval=heartbeat_interval, timeout=reclaim_timeout
        )
        self.writer = ChunkWriter(transport, self.publisher, self.reclaimer, chunk_size)
        self.reader = ObjectReader(
            transport,
            self.publisher,
            heartbeat_interval=heartbeat_interval,
            buffer_chunks=read_buffer_chunks,
        )

    @classmethod
    def from_config(cls, transport: StreamTransport, config) -> ObjectStoreClient:
        """Build a client from an ``ObjectsConfig``."""
        return cls(
            transport,
            chunk_size=config.chunk_size,
            read_buffer_chunks=config.read_buffer_chunks,
            heartbeat_interval=config.heartbeat_interval,
            reclaim_timeout=config.reclaim_timeout,
            verify_reads=config.verify_reads,
        )

    # -- Buckets ---------------------------------------------------------------

    async def create_bucket(
        self,
        name: str,
        description: str = "",
        ttl: float | None = None,
        storage: str = "file",
        replicas: int | None = None,
    ) -> Bucket:
        """Create the stream backing a bucket.

        Creating a bucket that already exists with the same settings is a
        no-op.

        Args:
            name: The bucket name.
            description: Stream description.
            ttl: Maximum object age in seconds, or None for no limit.
            storage: ``"file"`` or ``"memory"``.
            replicas: Replica count, or None for the server default.

        Returns:
            A handle to the bucket.

        Raises:
            InvalidBucketName: If the name is not valid.
            BucketAlreadyExists: If the bucket exists with other settings.
        """
        validate_bucket_name(name)
        settings = StreamSettings(
            name=stream_name(name),
            subjects=stream_subjects(name),
            description=description,
            max_age=ttl,
            storage=storage,
            replicas=replicas,
            discard_new=True,
            allow_rollup=True,
        )
        try:
            details = await self.transport.create_stream(settings)
        except StreamAlreadyExists as exc:
            raise BucketAlreadyExists(name) from exc
        logger.info("Created bucket %s", name, extra={"bucket": name})
        return Bucket.from_stream(details, self)

    async def delete_bucket(self, name: str) -> bool:
        """Delete a bucket and every object in it.

        Raises:
            BucketNotFound: If the bucket does not exist.
        """
        validate_bucket_name(name)
        try:
            deleted = await self.transport.delete_stream(stream_name(name))
        except StreamNotFound as exc:
            raise BucketNotFound(name) from exc
        logger.info("Deleted bucket %s", name, extra={"bucket": name})
        return deleted

    async def get_bucket(self, name: str) -> Bucket | None:
        """Return a handle to an existing bucket, or None."""
        validate_bucket_name(name)
        details = await self.transport.stream_info(stream_name(name))
        if details is None:
            return None
        return Bucket.from_stream(details, self)

    async def bucket_info(self, name: str) -> BucketInfo | None:
        """Return a summary of the bucket's stream, or None if it does not exist."""
        validate_bucket_name(name)
        details = await self.transport.stream_info(stream_name(name))
        if details is None:
            return None
        return BucketInfo(
            name=name,
            stream_name=details.name,
            description=details.description,
            ttl=details.max_age,
            storage=details.storage,
            replicas=details.replicas,
            messages=details.messages,
            bytes=details.bytes,
        )

    def bucket(self, name: str) -> Bucket:
        """Return a bucket handle without checking that the bucket exists."""
        validate_bucket_name(name)
        return Bucket(name, stream_name(name), self)

    # -- Objects ---------------------------------------------------------------

    async def put(
        self,
        bucket: str,
        key: str,
        source: ObjectSource,
        description: str | None = None,
        headers: dict[str, Any] | None = None,
        chunk_size: int | None = None,
    ) -> ObjectInfo:
        """Store an object, replacing any current version of the key.

        Raises:
            InvalidKey: If the key is not valid.
            BucketNotFound: If the bucket does not exist.
            TransportError: If the write fails (its chunks are rolled back).
        """
        try:
            info = await self.writer.write(
                bucket,
                key,
                source,
                description=description,
                headers=headers,
                chunk_size=chunk_size,
            )
        except Exception:
            metrics.record_operation("put", "error")
            raise
        metrics.record_operation("put", "ok")
        return info

    async def get_info(self, bucket: str, key: str) -> ObjectInfo | None:
        """Return the current descriptor of a key, or None if it does not exist.

        Raises:
            BucketNotFound: If the bucket does not exist.
        """
        try:
            info = await self.publisher.lookup(bucket, key)
        except Exception:
            metrics.record_operation("get_info", "error")
            raise
        metrics.record_operation("get_info", "ok" if info is not None else "not_found")
        return info

    async def get(
        self, bucket: str, key: str, verify: bool | None = None
    ) -> ObjectStream | None:
        """Open a stream over the current version of a key.

        Args:
            bucket: The bucket name.
            key: The object key.
            verify: Check size and digest at end of data; defaults to the
                client's ``verify_reads``.

        Returns:
            An ObjectStream the caller must read to the end or close, or None
            if the key does not exist.
        """
        if verify is None:
            verify = self.verify_reads
        try:
            stream = await self.reader.open(bucket, key, verify=verify)
        except Exception:
            metrics.record_operation("get", "error")
            raise
        metrics.record_operation("get", "ok" if stream is not None else "not_found")
        return stream


class Bucket:
    """Handle to one bucket of an ObjectStoreClient.

    Attributes:
        name: The bucket name.
        stream_name: The backing stream name.
    """

    def __init__(self, name: str, stream_name: str, client: ObjectStoreClient) -> None:
        self.name = name
        self.stream_name = stream_name
        self._client = client

    @classmethod
    def from_stream(cls, details: StreamDetails, client: ObjectStoreClient) -> Bucket:
        return cls(bucket_from_stream(details.name), details.name, client)

    def __repr__(self) -> str:
        return f"Bucket(name={self.name!r})"

    async def put(
        self,
        key: str,
        source: ObjectSource,
        description: str | None = None,
        headers: dict[str, Any] | None = None,
        chunk_size: int | None = None,
    ) -> ObjectInfo:
        return await self._client.put(
            self.name,
            key,
            source,
            description=description,
            headers=headers,
            chunk_size=chunk_size,
        )

    async def get_info(self, key: str) -> ObjectInfo | None:
        return await self._client.get_info(self.name, key)

    async def get(self, key: str, verify: bool | None = None) -> ObjectStream | None:
        return await self._client.get(self.name, key, verify=verify)

    async def get_info_or_raise(self, key: str) -> ObjectInfo:
        """Like ``get_info`` but raises KeyNotFound for a missing key."""
        info = await self.get_info(key)
        if info is None:
            raise KeyNotFound(self.name, key)
        return info

    async def get_or_raise(self, key: str, verify: bool | None = None) -> ObjectStream:
        """Like ``get`` but raises KeyNotFound for a missing key."""
        stream = await self.get(key, verify=verify)
        if stream is None:
            raise KeyNotFound(self.name, key)
        return stream

    async def info(self) -> BucketInfo:
        """Return the bucket summary.

        Raises:
            BucketNotFound: If the bucket no longer exists.
        """
        info = await self._client.bucket_info(self.name)
        if info is None:
            raise BucketNotFound(self.name)
        return info
