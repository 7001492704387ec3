"""Tests for the in-memory stream transport."""

import asyncio

import pytest

from streamstore.errors import StreamAlreadyExists, StreamNotFound, TransportError
from streamstore.transport.base import (
    MSG_SIZE_HEADER,
    ROLLUP_HEADER,
    ConsumerSettings,
    StreamSettings,
)
from streamstore.transport.memory import MemoryTransport, subject_matches


def _settings(**overrides) -> StreamSettings:
    fields = dict(name="S", subjects=["s.>"])
    fields.update(overrides)
    return StreamSettings(**fields)


async def _collect(transport, stream, filter_subject, headers_only=False):
    """Consume every message on ``filter_subject`` through a push consumer."""
    received = []
    done = asyncio.Event()

    async def handler(msg):
        received.append(msg)
        if msg.num_pending == 0:
            done.set()

    sub = await transport.subscribe("deliver.test", handler)
    consumer = await transport.add_consumer(
        stream,
        ConsumerSettings(
            deliver_subject="deliver.test",
            filter_subject=filter_subject,
            headers_only=headers_only,
        ),
    )
    if consumer.num_pending:
        await asyncio.wait_for(done.wait(), 1.0)
    await transport.delete_consumer(stream, consumer.name)
    await sub.unsubscribe()
    return consumer, received


class TestSubjectMatches:
    """Tests for subject_matches()."""

    @pytest.mark.parametrize(
        "pattern,subject,expected",
        [
            ("a.b", "a.b", True),
            ("a.b", "a.c", False),
            ("a.*", "a.b", True),
            ("a.*", "a.b.c", False),
            ("a.>", "a.b.c", True),
            ("a.>", "a", False),
            ("*.b", "a.b", True),
            ("a.b.c", "a.b", False),
        ],
    )
    def test_matching(self, pattern, subject, expected):
        assert subject_matches(pattern, subject) is expected


class TestStreams:
    """Tests for stream administration."""

    async def test_create_and_info(self, transport):
        details = await transport.create_stream(_settings(description="d"))
        assert details.name == "S"
        info = await transport.stream_info("S")
        assert info.description == "d"
        assert info.messages == 0

    async def test_create_identical_is_idempotent(self, transport):
        await transport.create_stream(_settings())
        await transport.create_stream(_settings())

    async def test_create_conflicting(self, transport):
        await transport.create_stream(_settings())
        with pytest.raises(StreamAlreadyExists):
            await transport.create_stream(_settings(description="other"))

    async def test_overlapping_subjects_rejected(self, transport):
        await transport.create_stream(_settings())
        with pytest.raises(TransportError):
            await transport.create_stream(_settings(name="T", subjects=["s.x.>"]))

    async def test_info_missing(self, transport):
        assert await transport.stream_info("nope") is None

    async def test_delete(self, transport):
        await transport.create_stream(_settings())
        assert await transport.delete_stream("S") is True
        assert await transport.stream_info("S") is None

    async def test_delete_missing(self, transport):
        with pytest.raises(StreamNotFound):
            await transport.delete_stream("nope")

    async def test_closed_transport_rejects_calls(self):
        t = MemoryTransport()
        with pytest.raises(TransportError):
            await t.stream_info("S")


class TestMessages:
    """Tests for publish, lookup, purge and delete."""

    async def test_publish_assigns_sequences(self, transport):
        await transport.create_stream(_settings())
        first = await transport.publish("s.a", b"1")
        second = await transport.publish("s.b", b"2")
        assert (first.stream, first.seq) == ("S", 1)
        assert second.seq == 2

    async def test_publish_without_stream(self, transport):
        with pytest.raises(TransportError):
            await transport.publish("unknown.subject", b"x")

    async def test_get_last_msg(self, transport):
        await transport.create_stream(_settings())
        await transport.publish("s.a", b"old", headers={"H": "1"})
        await transport.publish("s.a", b"new", headers={"H": "2"})
        await transport.publish("s.b", b"other")
        msg = await transport.get_last_msg("S", "s.a")
        assert msg.data == b"new"
        assert msg.headers == {"H": "2"}
        assert msg.seq == 2

    async def test_get_last_msg_empty_subject(self, transport):
        await transport.create_stream(_settings())
        assert await transport.get_last_msg("S", "s.none") is None

    async def test_get_last_msg_missing_stream(self, transport):
        with pytest.raises(StreamNotFound):
            await transport.get_last_msg("nope", "s.a")

    async def test_rollup_subject_replaces_earlier_messages(self, transport):
        await transport.create_stream(_settings())
        await transport.publish("s.a", b"1")
        await transport.publish("s.a", b"2")
        await transport.publish("s.b", b"keep")
        await transport.publish("s.a", b"3", headers={ROLLUP_HEADER: "sub"})
        remaining = [(m.subject, m.data) for m in transport.stored_messages("S")]
        assert remaining == [("s.b", b"keep"), ("s.a", b"3")]

    async def test_rollup_rejected_when_not_allowed(self, transport):
        await transport.create_stream(_settings(allow_rollup=False))
        with pytest.raises(TransportError, match="Rollup"):
            await transport.publish("s.a", b"1", headers={ROLLUP_HEADER: "sub"})

    async def test_discard_new_max_msgs(self, transport):
        await transport.create_stream(_settings(max_msgs=2))
        await transport.publish("s.a", b"1")
        await transport.publish("s.a", b"2")
        with pytest.raises(TransportError, match="Maximum messages"):
            await transport.publish("s.a", b"3")

    async def test_discard_new_max_bytes(self, transport):
        await transport.create_stream(_settings(max_bytes=4))
        await transport.publish("s.a", b"123")
        with pytest.raises(TransportError, match="Maximum bytes"):
            await transport.publish("s.a", b"45")

    async def test_discard_old_evicts(self, transport):
        await transport.create_stream(_settings(max_msgs=2, discard_new=False))
        for i in range(3):
            await transport.publish("s.a", str(i).encode())
        assert [m.data for m in transport.stored_messages("S")] == [b"1", b"2"]

    async def test_max_age_expires(self, transport):
        await transport.create_stream(_settings(max_age=0.01))
        await transport.publish("s.a", b"1")
        await asyncio.sleep(0.05)
        assert await transport.get_last_msg("S", "s.a") is None

    async def test_purge_subject_before_seq(self, transport):
        await transport.create_stream(_settings())
        for subject in ("s.a", "s.a", "s.b", "s.a"):
            await transport.publish(subject, b"x")
        await transport.purge("S", subject="s.a", before_seq=3)
        assert [m.seq for m in transport.stored_messages("S")] == [3, 4]

    async def test_purge_all(self, transport):
        await transport.create_stream(_settings())
        await transport.publish("s.a", b"x")
        await transport.purge("S")
        assert transport.stored_messages("S") == []
        assert (await transport.stream_info("S")).bytes == 0

    async def test_delete_msg(self, transport):
        await transport.create_stream(_settings())
        await transport.publish("s.a", b"x")
        assert await transport.delete_msg("S", 1) is True
        assert await transport.delete_msg("S", 1) is False


class TestConsumers:
    """Tests for ephemeral push consumers."""

    async def test_delivers_filtered_in_order(self, transport):
        await transport.create_stream(_settings())
        for i in range(5):
            await transport.publish("s.a", f"a{i}".encode())
            await transport.publish("s.b", f"b{i}".encode())
        consumer, received = await _collect(transport, "S", "s.a")
        assert consumer.num_pending == 5
        assert [m.data for m in received] == [b"a0", b"a1", b"a2", b"a3", b"a4"]
        assert [m.num_pending for m in received] == [4, 3, 2, 1, 0]
        assert [m.stream_seq for m in received] == [1, 3, 5, 7, 9]

    async def test_headers_only(self, transport):
        await transport.create_stream(_settings())
        await transport.publish("s.a", b"12345", headers={"Obj-Id": "X"})
        _, received = await _collect(transport, "S", "s.a", headers_only=True)
        assert received[0].data == b""
        assert received[0].headers == {"Obj-Id": "X", MSG_SIZE_HEADER: "5"}

    async def test_no_pending(self, transport):
        await transport.create_stream(_settings())
        consumer, received = await _collect(transport, "S", "s.a")
        assert consumer.num_pending == 0
        assert received == []

    async def test_delete_consumer_removes_it(self, transport):
        await transport.create_stream(_settings())
        await _collect(transport, "S", "s.a")
        assert transport.consumer_count("S") == 0

    async def test_late_messages_delivered(self, transport):
        await transport.create_stream(_settings())
        received = []

        async def handler(msg):
            received.append(msg.data)

        sub = await transport.subscribe("late", handler)
        consumer = await transport.add_consumer(
            "S", ConsumerSettings(deliver_subject="late", filter_subject="s.a")
        )
        await transport.publish("s.a", b"after")
        await asyncio.sleep(0.01)
        assert received == [b"after"]
        await transport.delete_consumer("S", consumer.name)
        await sub.unsubscribe()

    async def test_flow_control_requires_heartbeat(self, transport):
        await transport.create_stream(_settings())
        with pytest.raises(TransportError, match="heartbeat"):
            await transport.add_consumer(
                "S",
                ConsumerSettings(deliver_subject="d", filter_subject="s.a", idle_heartbeat=0),
            )

    async def test_slow_handler_paces_delivery(self, transport):
        """Delivery waits for the handler before sending the next message."""
        await transport.create_stream(_settings())
        for i in range(3):
            await transport.publish("s.a", str(i).encode())
        gate = asyncio.Event()
        received = []

        async def handler(msg):
            received.append(msg.data)
            await gate.wait()

        sub = await transport.subscribe("slow", handler)
        consumer = await transport.add_consumer(
            "S", ConsumerSettings(deliver_subject="slow", filter_subject="s.a")
        )
        await asyncio.sleep(0.01)
        assert received == [b"0"]
        gate.set()
        await asyncio.sleep(0.01)
        assert received == [b"0", b"1", b"2"]
        await transport.delete_consumer("S", consumer.name)
        await sub.unsubscribe()

    async def test_handler_errors_do_not_stop_delivery(self, transport):
        await transport.create_stream(_settings())
        await transport.publish("s.a", b"1")
        await transport.publish("s.a", b"2")
        received = []

        async def handler(msg):
            received.append(msg.data)
            if msg.data == b"1":
                raise RuntimeError("boom")

        sub = await transport.subscribe("err", handler)
        consumer = await transport.add_consumer(
            "S", ConsumerSettings(deliver_subject="err", filter_subject="s.a")
        )
        await asyncio.sleep(0.01)
        assert received == [b"1", b"2"]
        await transport.delete_consumer("S", consumer.name)
        await sub.unsubscribe()
