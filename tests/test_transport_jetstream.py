"""Unit tests for the NATS JetStream transport.

All tests use mocked nats-py objects, so no NATS server is required. The
mock connection and JetStream context are injected directly onto
transport._nc and transport._js to bypass connect().
"""

import base64
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, PropertyMock, patch

import pytest
from nats.errors import NoServersError, NotJSMessageError
from nats.errors import TimeoutError as NATSTimeoutError
from nats.js import api
from nats.js.errors import APIError

from streamstore.errors import StreamAlreadyExists, StreamNotFound, TransportError
from streamstore.transport.base import ConsumerSettings, DeliveredMessage, StreamSettings
from streamstore.transport.jetstream import JetStreamTransport, parse_headers


def _make_transport() -> JetStreamTransport:
    """Create a JetStreamTransport with mock connection and context."""
    transport = JetStreamTransport(servers=["nats://localhost:4222"])
    transport._nc = MagicMock()
    transport._nc.publish = AsyncMock()
    transport._nc.request = AsyncMock()
    transport._nc.flush = AsyncMock()
    transport._nc.subscribe = AsyncMock()
    transport._js = AsyncMock()
    return transport


def _api_error(err_code: int, code: int = 400, description: str = "error") -> APIError:
    return APIError(code=code, description=description, err_code=err_code)


def _msg_get_response(**message) -> MagicMock:
    resp = MagicMock()
    resp.data = json.dumps(
        {"type": "io.nats.jetstream.api.v1.stream_msg_get_response", "message": message}
    ).encode()
    return resp


def _error_response(err_code: int, code: int = 404) -> MagicMock:
    resp = MagicMock()
    resp.data = json.dumps(
        {"error": {"code": code, "err_code": err_code, "description": "failed"}}
    ).encode()
    return resp


class TestParseHeaders:
    """Tests for parse_headers()."""

    def test_parses_header_block(self):
        raw = b"NATS/1.0\r\nNats-Rollup: sub\r\nObj-Id: ABC\r\n\r\n"
        assert parse_headers(raw) == {"Nats-Rollup": "sub", "Obj-Id": "ABC"}

    def test_empty(self):
        assert parse_headers(b"") == {}

    def test_value_with_colon(self):
        raw = b"NATS/1.0\r\nX-Url: http://host:1\r\n\r\n"
        assert parse_headers(raw) == {"X-Url": "http://host:1"}


class TestConnect:
    """Tests for connect() and close()."""

    async def test_connect_opens_jetstream_context(self):
        nc = MagicMock()
        nc.jetstream = MagicMock(return_value="js-context")
        nc.connected_url.netloc = "localhost:4222"
        with patch(
            "streamstore.transport.jetstream.nats.connect", AsyncMock(return_value=nc)
        ) as connect:
            transport = JetStreamTransport(
                servers=["nats://a:4222"], name="test", connect_timeout=1.5,
                request_timeout=3.0, api_prefix="$JS.hub.API",
            )
            await transport.connect()

        kwargs = connect.await_args.kwargs
        assert kwargs["servers"] == ["nats://a:4222"]
        assert kwargs["name"] == "test"
        assert kwargs["connect_timeout"] == 1.5
        nc.jetstream.assert_called_once_with(prefix="$JS.hub.API", timeout=3.0)
        assert transport._js == "js-context"

    async def test_connect_failure(self):
        with patch(
            "streamstore.transport.jetstream.nats.connect",
            AsyncMock(side_effect=NoServersError()),
        ):
            with pytest.raises(TransportError):
                await JetStreamTransport().connect()

    async def test_close(self):
        transport = _make_transport()
        nc = transport._nc
        nc.is_closed = False
        nc.close = AsyncMock()
        await transport.close()
        nc.close.assert_awaited_once()
        assert transport._nc is None

    async def test_not_connected(self):
        with pytest.raises(TransportError, match="not connected"):
            await JetStreamTransport().publish("s", b"x")


class TestStreams:
    """Tests for stream administration."""

    async def test_create_stream_config(self):
        transport = _make_transport()
        info = MagicMock()
        info.config.name = "OBJ_b"
        info.config.subjects = ["$O.b.C.>", "$O.b.M.>"]
        info.config.description = "d"
        info.config.max_age = 60.0
        info.config.storage = api.StorageType.FILE
        info.config.num_replicas = 1
        info.state.messages = 0
        info.state.bytes = 0
        transport._js.add_stream.return_value = info

        details = await transport.create_stream(
            StreamSettings(name="OBJ_b", subjects=["$O.b.C.>", "$O.b.M.>"], max_age=60.0)
        )

        config = transport._js.add_stream.await_args.args[0]
        assert config.name == "OBJ_b"
        assert config.allow_rollup_hdrs is True
        assert config.discard == api.DiscardPolicy.NEW
        assert config.storage == api.StorageType.FILE
        assert config.max_age == 60.0
        assert details.name == "OBJ_b"
        assert details.storage == "file"
        assert details.max_age == 60.0

    async def test_create_stream_name_in_use(self):
        transport = _make_transport()
        transport._js.add_stream.side_effect = _api_error(10058)
        with pytest.raises(StreamAlreadyExists):
            await transport.create_stream(StreamSettings(name="OBJ_b", subjects=["x.>"]))

    async def test_stream_info_missing(self):
        transport = _make_transport()
        transport._js.stream_info.side_effect = _api_error(10059, code=404)
        assert await transport.stream_info("OBJ_b") is None

    async def test_delete_stream_missing(self):
        transport = _make_transport()
        transport._js.delete_stream.side_effect = _api_error(10059, code=404)
        with pytest.raises(StreamNotFound):
            await transport.delete_stream("OBJ_b")

    async def test_other_api_errors(self):
        transport = _make_transport()
        transport._js.delete_stream.side_effect = _api_error(10999, code=500)
        with pytest.raises(TransportError, match="err_code=10999"):
            await transport.delete_stream("OBJ_b")


class TestMessages:
    """Tests for publish, last-message lookup, purge and delete."""

    async def test_publish(self):
        transport = _make_transport()
        ack = MagicMock()
        ack.stream = "OBJ_b"
        ack.seq = 7
        transport._js.publish.return_value = ack

        result = await transport.publish("$O.b.C.k", b"data", headers={"Obj-Id": "X"})

        transport._js.publish.assert_awaited_once_with(
            "$O.b.C.k", b"data", headers={"Obj-Id": "X"}
        )
        assert (result.stream, result.seq) == ("OBJ_b", 7)

    async def test_publish_timeout(self):
        transport = _make_transport()
        transport._js.publish.side_effect = NATSTimeoutError()
        with pytest.raises(TransportError):
            await transport.publish("$O.b.C.k", b"data")

    async def test_get_last_msg(self):
        transport = _make_transport()
        transport._nc.request.return_value = _msg_get_response(
            subject="$O.b.M.k",
            seq=12,
            hdrs=base64.b64encode(b"NATS/1.0\r\nNats-Rollup: sub\r\n\r\n").decode(),
            data=base64.b64encode(b'{"name":"k"}').decode(),
            time="2024-05-01T10:00:00.123456789Z",
        )

        msg = await transport.get_last_msg("OBJ_b", "$O.b.M.k")

        subject, payload = transport._nc.request.await_args.args
        assert subject == "$JS.API.STREAM.MSG.GET.OBJ_b"
        assert json.loads(payload) == {"last_by_subj": "$O.b.M.k"}
        assert msg.seq == 12
        assert msg.data == b'{"name":"k"}'
        assert msg.headers == {"Nats-Rollup": "sub"}
        assert msg.time == datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)

    async def test_get_last_msg_no_message(self):
        transport = _make_transport()
        transport._nc.request.return_value = _error_response(10037)
        assert await transport.get_last_msg("OBJ_b", "$O.b.M.k") is None

    async def test_get_last_msg_stream_missing(self):
        transport = _make_transport()
        transport._nc.request.return_value = _error_response(10059)
        with pytest.raises(StreamNotFound):
            await transport.get_last_msg("OBJ_b", "$O.b.M.k")

    async def test_get_last_msg_other_error(self):
        transport = _make_transport()
        transport._nc.request.return_value = _error_response(10001, code=500)
        with pytest.raises(TransportError, match="err_code=10001"):
            await transport.get_last_msg("OBJ_b", "$O.b.M.k")

    async def test_get_last_msg_bad_json(self):
        transport = _make_transport()
        resp = MagicMock()
        resp.data = b"not json"
        transport._nc.request.return_value = resp
        with pytest.raises(TransportError, match="Invalid JetStream API response"):
            await transport.get_last_msg("OBJ_b", "$O.b.M.k")

    async def test_purge(self):
        transport = _make_transport()
        await transport.purge("OBJ_b", subject="$O.b.C.k", before_seq=5)
        transport._js.purge_stream.assert_awaited_once_with(
            "OBJ_b", seq=5, subject="$O.b.C.k"
        )

    async def test_delete_msg(self):
        transport = _make_transport()
        transport._js.delete_msg.return_value = True
        assert await transport.delete_msg("OBJ_b", 3) is True
        transport._js.delete_msg.assert_awaited_once_with("OBJ_b", 3)

    async def test_flush(self):
        transport = _make_transport()
        await transport.flush()
        transport._nc.flush.assert_awaited_once_with(timeout=5.0)


class TestConsumers:
    """Tests for consumers and message dispatch."""

    async def test_add_consumer_config(self):
        transport = _make_transport()
        info = MagicMock()
        info.name = "C1"
        info.num_pending = 4
        transport._js.add_consumer.return_value = info

        details = await transport.add_consumer(
            "OBJ_b",
            ConsumerSettings(deliver_subject="d.1", filter_subject="$O.b.C.k", idle_heartbeat=5.0),
        )

        stream, config = transport._js.add_consumer.await_args.args
        assert stream == "OBJ_b"
        assert config.deliver_subject == "d.1"
        assert config.filter_subject == "$O.b.C.k"
        assert config.flow_control is True
        assert config.idle_heartbeat == 5.0
        assert config.max_deliver == 1
        assert config.ack_policy == api.AckPolicy.NONE
        assert (details.name, details.num_pending) == ("C1", 4)

    async def test_dispatch_answers_flow_control(self):
        transport = _make_transport()
        handler = AsyncMock()
        msg = MagicMock()
        msg.headers = {"Status": "100", "Description": "FlowControl Request"}
        msg.data = b""
        msg.reply = "$JS.FC.OBJ_b.x"

        await transport._dispatch(msg, handler)

        transport._nc.publish.assert_awaited_once_with("$JS.FC.OBJ_b.x", b"")
        handler.assert_not_awaited()

    async def test_dispatch_answers_stalled_heartbeat(self):
        transport = _make_transport()
        handler = AsyncMock()
        msg = MagicMock()
        msg.headers = {"Status": "100", "Nats-Consumer-Stalled": "$JS.FC.OBJ_b.y"}
        msg.data = b""
        msg.reply = ""

        await transport._dispatch(msg, handler)

        transport._nc.publish.assert_awaited_once_with("$JS.FC.OBJ_b.y", b"")
        handler.assert_not_awaited()

    async def test_dispatch_idle_heartbeat_ignored(self):
        transport = _make_transport()
        handler = AsyncMock()
        msg = MagicMock()
        msg.headers = {"Status": "100", "Description": "Idle Heartbeat"}
        msg.data = b""
        msg.reply = ""

        await transport._dispatch(msg, handler)

        transport._nc.publish.assert_not_awaited()
        handler.assert_not_awaited()

    async def test_dispatch_forwards_data(self):
        transport = _make_transport()
        handler = AsyncMock()
        msg = MagicMock()
        msg.headers = {"Obj-Id": "X"}
        msg.data = b"chunk"
        msg.subject = "$O.b.C.k"
        msg.metadata.sequence.stream = 9
        msg.metadata.num_pending = 0

        await transport._dispatch(msg, handler)

        handler.assert_awaited_once_with(
            DeliveredMessage(
                subject="$O.b.C.k",
                data=b"chunk",
                headers={"Obj-Id": "X"},
                stream_seq=9,
                num_pending=0,
            )
        )

    async def test_dispatch_drops_non_jetstream(self):
        transport = _make_transport()
        handler = AsyncMock()
        msg = MagicMock()
        msg.headers = None
        msg.data = b"plain"
        type(msg).metadata = PropertyMock(side_effect=NotJSMessageError())

        await transport._dispatch(msg, handler)

        handler.assert_not_awaited()

    async def test_subscribe_wraps_subscription(self):
        transport = _make_transport()
        sub = MagicMock()
        sub.unsubscribe = AsyncMock()
        transport._nc.subscribe.return_value = sub

        handle = await transport.subscribe("d.1", AsyncMock())
        await handle.unsubscribe()

        assert transport._nc.subscribe.await_args.args == ("d.1",)
        sub.unsubscribe.assert_awaited_once()
