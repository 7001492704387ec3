"""Metadata publisher: commits and looks up object descriptors.

Each key has one metadata subject. A commit publishes the descriptor with a
``Nats-Rollup: sub`` header, so the stream itself discards every earlier
descriptor on that subject; there is no client-side read-modify-write.
"""

import logging

from streamstore.errors import BucketNotFound, StreamNotFound
from streamstore.models import ObjectInfo
from streamstore.objects.codec import meta_subject, stream_name
from streamstore.transport.base import ROLLUP_HEADER, ROLLUP_SUBJECT, PubAck, StreamTransport

logger = logging.getLogger(__name__)


class MetadataPublisher:
    """Publishes descriptors as the single current message per key.

    Attributes:
        transport: The stream transport.
    """

    def __init__(self, transport: StreamTransport) -> None:
        self.transport = transport

    async def publish(self, info: ObjectInfo) -> PubAck:
        """Publish a descriptor with a subject rollup.

        Once this returns the descriptor is current and every earlier one for
        the key is gone.

        Raises:
            TransportError: If the publish is not acknowledged.
        """
        subject = meta_subject(info.bucket, info.name)
        ack = await self.transport.publish(
            subject, info.to_json(), headers={ROLLUP_HEADER: ROLLUP_SUBJECT}
        )
        logger.debug(
            "Committed descriptor %s seq=%d",
            subject,
            ack.seq,
            extra={"bucket": info.bucket, "key": info.name, "object_id": info.id},
        )
        return ack

    async def commit(self, info: ObjectInfo) -> ObjectInfo:
        """Publish a descriptor, replacing any earlier one for the same key.

        Waits for a flush after the acknowledged publish.

        Args:
            info: The descriptor to commit.

        Returns:
            The committed descriptor (its mtime is the provisional client time).

        Raises:
            TransportError: If the publish or flush fails.
        """
        await self.publish(info)
        await self.transport.flush()
        return info

    async def lookup(self, bucket: str, key: str) -> ObjectInfo | None:
        """Fetch the current descriptor for a key.

        The descriptor's mtime is replaced with the time the server stored
        the metadata message.

        Args:
            bucket: The bucket name.
            key: The object key (raw; sanitized here).

        Returns:
            The current descriptor, or None if the key has never been written.

        Raises:
            BucketNotFound: If the bucket's stream does not exist.
            CorruptMetadata: If the stored descriptor cannot be decoded.
            TransportError: If the lookup fails.
        """
        try:
            msg = await self.transport.get_last_msg(stream_name(bucket), meta_subject(bucket, key))
        except StreamNotFound as exc:
            raise BucketNotFound(bucket) from exc
        if msg is None:
            return None
        info = ObjectInfo.from_json(msg.data)
        info.mtime = msg.time
        return info
