"""Version reclaimer: removes the chunks of a superseded object version.

All versions of a key publish chunks on the same subject, so the previous
version's chunks are found by their ``Obj-Id`` header. A headers-only
ephemeral consumer walks the subject without transferring payloads. When the
tagged chunks are the oldest messages on the subject they go in one purge,
otherwise they are deleted one by one.

Reclamation is space cleanup only. Once the new descriptor is committed the
old chunks are unreachable, so failures here are logged and never raised.
"""

import asyncio
import logging

from streamstore import metrics
from streamstore.errors import TransportError
from streamstore.models import ObjectInfo
from streamstore.objects.codec import (
    OBJECT_ID_HEADER,
    chunk_subject,
    deliver_subject,
    stream_name,
)
from streamstore.transport.base import ConsumerSettings, DeliveredMessage, StreamTransport

logger = logging.getLogger(__name__)


class VersionReclaimer:
    """Purges chunk messages belonging to a previous object version.

    Attributes:
        transport: The stream transport.
        heartbeat_interval: Idle heartbeat for the scanning consumer, in seconds.
        timeout: Upper bound on one reclamation, in seconds.
    """

    def __init__(
        self,
        transport: StreamTransport,
        heartbeat_interval: float = 5.0,
        timeout: float = 30.0,
    ) -> None:
        self.transport = transport
        self.heartbeat_interval = heartbeat_interval
        self.timeout = timeout

    async def reclaim(self, previous: ObjectInfo) -> int:
        """Remove every chunk message tagged with ``previous.id``.

        Args:
            previous: The descriptor that was just superseded.

        Returns:
            The number of chunk messages removed (0 on failure).
        """
        if previous.chunks == 0:
            return 0

        log_extra = {"bucket": previous.bucket, "key": previous.name, "object_id": previous.id}
        try:
            removed = await asyncio.wait_for(self._reclaim(previous), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Timed out reclaiming chunks of %s/%s version %s",
                previous.bucket,
                previous.name,
                previous.id,
                extra=log_extra,
            )
            metrics.record_reclaim("timeout")
            return 0
        except Exception:
            logger.warning(
                "Failed to reclaim chunks of %s/%s version %s",
                previous.bucket,
                previous.name,
                previous.id,
                exc_info=True,
                extra=log_extra,
            )
            metrics.record_reclaim("error")
            return 0

        metrics.record_reclaim("ok")
        logger.debug(
            "Reclaimed %d chunks of %s/%s version %s",
            removed,
            previous.bucket,
            previous.name,
            previous.id,
            extra=log_extra,
        )
        return removed

    async def _reclaim(self, previous: ObjectInfo) -> int:
        stream = stream_name(previous.bucket)
        subject = chunk_subject(previous.bucket, previous.name)
        tagged, others = await self._scan(stream, subject, previous)
        if not tagged:
            return 0

        highest = tagged[-1]
        if not any(seq < highest for seq in others):
            await self.transport.purge(stream, subject=subject, before_seq=highest + 1)
        else:
            for seq in tagged:
                await self.transport.delete_msg(stream, seq)
        return len(tagged)

    async def _scan(
        self, stream: str, subject: str, previous: ObjectInfo
    ) -> tuple[list[int], list[int]]:
        """Return (tagged, other) stream sequences on ``subject``, ascending."""
        tagged: list[int] = []
        others: list[int] = []
        done = asyncio.Event()

        async def on_message(msg: DeliveredMessage) -> None:
            if done.is_set():
                return
            if msg.headers.get(OBJECT_ID_HEADER) == previous.id:
                tagged.append(msg.stream_seq)
            else:
                others.append(msg.stream_seq)
            if msg.num_pending == 0:
                done.set()

        deliver = deliver_subject(previous.bucket, previous.name)
        sub = await self.transport.subscribe(deliver, on_message)
        consumer = None
        try:
            consumer = await self.transport.add_consumer(
                stream,
                ConsumerSettings(
                    deliver_subject=deliver,
                    filter_subject=subject,
                    idle_heartbeat=self.heartbeat_interval,
                    headers_only=True,
                ),
            )
            if consumer.num_pending > 0:
                await done.wait()
        finally:
            if consumer is not None:
                try:
                    await self.transport.delete_consumer(stream, consumer.name)
                except TransportError as exc:
                    logger.warning("Failed to delete scan consumer %s: %s", consumer.name, exc)
            try:
                await sub.unsubscribe()
            except TransportError as exc:
                logger.warning("Failed to unsubscribe from %s: %s", deliver, exc)
        return tagged, others
