"""Tests for the outbound dispatcher, heartbeat and session relay supervisor."""

import asyncio
import logging

import pytest

from llamabot_relay.errors import UpstreamConnectionError, UpstreamIOError
from llamabot_relay.relay.dispatcher import OutboundDispatcher
from llamabot_relay.relay.heartbeat import HeartbeatTask
from llamabot_relay.relay.inbound import InboundAdapter
from llamabot_relay.relay.manager import RelayManager
from llamabot_relay.relay.supervisor import RelayState, SessionRelay
from llamabot_relay.upstream.connection import UpstreamConnection
from tests.fakes import FakeConnectionFactory, FakeTransport, wait_until


def make_relay(channel, factory, signer, prompts, session_id="s-1", **kwargs) -> SessionRelay:
    return SessionRelay(
        session_id=session_id,
        channel=channel,
        connection_factory=factory,
        inbound=InboundAdapter(signer, prompts),
        **kwargs,
    )


@pytest.mark.unit
class TestOutboundDispatcher:
    async def test_ai_and_pong_become_two_envelopes(self, channel):
        transport = FakeTransport()
        transport.push('{"type":"ai","content":"Hi","id":"m-1"}\n{"type":"pong","content":"x"}\n')
        transport.hang_up()
        dispatcher = OutboundDispatcher(UpstreamConnection(transport, "s-1"), channel, "s-1")

        await dispatcher.run()

        assert channel.envelopes("s-1") == [
            {"type": "ai", "content": "Hi", "id": "m-1"},
            {"type": "pong"},
        ]
        assert dispatcher.frames_published == 2

    async def test_frames_split_across_reads(self, channel):
        transport = FakeTransport()
        transport.push('{"type":"tool","con')
        transport.push('tent":"search"}\n{"type":"fin')
        transport.push('al","content":"ok"}')
        transport.hang_up()
        dispatcher = OutboundDispatcher(UpstreamConnection(transport, "s-1"), channel, "s-1")

        await dispatcher.run()

        assert [e["type"] for e in channel.envelopes()] == ["tool", "final"]

    async def test_hang_up_fires_on_finished(self, channel, caplog):
        finished = asyncio.Event()

        async def on_finished():
            finished.set()

        transport = FakeTransport()
        transport.hang_up()
        dispatcher = OutboundDispatcher(
            UpstreamConnection(transport, "s-1"), channel, "s-1", on_finished=on_finished
        )

        await dispatcher.run()

        assert finished.is_set()
        assert "Upstream hung up" in caplog.text

    async def test_malformed_line_between_valid_frames(self, channel, caplog):
        transport = FakeTransport()
        transport.push(
            '{"type":"ai","content":"one"}\nnot-json\n{"type":"final","content":"done"}\n'
        )
        transport.hang_up()
        dispatcher = OutboundDispatcher(UpstreamConnection(transport, "s-1"), channel, "s-1")

        with caplog.at_level(logging.ERROR, logger="llamabot_relay.protocol.frames"):
            await dispatcher.run()

        assert channel.envelopes("s-1") == [
            {"type": "ai", "content": "one"},
            {"type": "final", "content": "done"},
        ]
        assert dispatcher.frames_published == 2
        decode_errors = [
            r for r in caplog.records
            if r.name == "llamabot_relay.protocol.frames" and r.levelno == logging.ERROR
        ]
        assert len(decode_errors) == 1

    async def test_null_fields_are_passed_through(self, channel):
        transport = FakeTransport()
        transport.push('{"type":"ai","content":"x","id":null}\n{"type":"tool","name":"search"}\n')
        transport.hang_up()
        dispatcher = OutboundDispatcher(UpstreamConnection(transport, "s-1"), channel, "s-1")

        await dispatcher.run()

        assert channel.envelopes("s-1") == [
            {"type": "ai", "content": "x", "id": None},
            {"type": "tool", "name": "search"},
        ]

    async def test_publish_failure_does_not_stop_the_loop(self, caplog):
        class FailingChannel:
            async def publish(self, session_key, envelope):
                raise RuntimeError("socket gone")

        transport = FakeTransport()
        transport.push('{"type":"ai","content":"a"}\n{"type":"ai","content":"b"}\n')
        transport.hang_up()
        dispatcher = OutboundDispatcher(
            UpstreamConnection(transport, "s-1"), FailingChannel(), "s-1"
        )

        await dispatcher.run()

        assert dispatcher.frames_published == 0
        assert caplog.text.count("Failed to publish ai frame") == 2


@pytest.mark.unit
class TestHeartbeatTask:
    async def test_pings_until_connection_closes(self):
        transport = FakeTransport()
        connection = UpstreamConnection(transport, "s-1")
        heartbeat = HeartbeatTask(connection, interval_seconds=0.01)

        task = asyncio.create_task(heartbeat.run())
        await wait_until(lambda: heartbeat.pings_sent >= 2)
        await connection.close()
        await asyncio.wait_for(task, timeout=1.0)

        pings = transport.sent_frames(include_pings=True)
        assert pings[0] == {"type": "ping", "connection_id": "s-1", "connection_state": "connected"}

    async def test_write_failure_ends_loop_without_retry(self, caplog):
        failures = []

        async def on_failed(error):
            failures.append(error)

        transport = FakeTransport(fail_send=True)
        heartbeat = HeartbeatTask(
            UpstreamConnection(transport, "s-1"), interval_seconds=0.01, on_failed=on_failed
        )

        with caplog.at_level(logging.WARNING, logger="llamabot_relay.relay.heartbeat"):
            await asyncio.wait_for(heartbeat.run(), timeout=1.0)

        assert heartbeat.pings_sent == 0
        assert len(failures) == 1
        assert isinstance(failures[0], UpstreamIOError)
        assert "Heartbeat stopped" in caplog.text


@pytest.mark.unit
class TestSessionRelay:
    async def test_hello_scenario(self, channel, factory, signer, prompts):
        relay = make_relay(channel, factory, signer, prompts)

        await relay.open()
        assert await relay.wait_ready() == RelayState.OPEN
        assert channel.envelopes("s-1")[0] == {
            "type": "external_ws_pong",
            "content": "connected",
            "session_id": "s-1",
            "connection_state": "connected",
        }

        assert await relay.relay_inbound({"message": "hello"}, {}) is True

        [payload] = factory.transport.sent_frames()
        assert payload["message"] == "hello"
        assert payload["thread_id"] == "global_thread_id"
        assert payload["agent_name"] == "llamabot"
        assert signer.is_valid(payload["api_token"])

        await relay.close()

    async def test_upstream_replies_reach_the_client(self, channel, signer, prompts):
        factory = FakeConnectionFactory(
            responder=lambda frame: [{"type": "ai", "content": f"echo: {frame['message']}"}]
        )
        relay = make_relay(channel, factory, signer, prompts)
        await relay.open()
        await relay.wait_ready()

        await relay.relay_inbound({"message": "ping?"}, {})
        await wait_until(lambda: channel.of_type("ai"))

        assert channel.of_type("ai") == [{"type": "ai", "content": "echo: ping?"}]
        await relay.close()

    async def test_failed_heartbeat_tears_session_down(self, channel, signer, prompts):
        factory = FakeConnectionFactory(fail_send=True)
        relay = make_relay(channel, factory, signer, prompts, heartbeat_interval_seconds=0.01)
        await relay.open()

        await asyncio.wait_for(relay.wait_closed(), timeout=1.0)

        assert relay.state == RelayState.CLOSED
        assert relay.close_reason == "upstream write failed"
        assert channel.of_type("error")[-1]["error_code"] == "UPSTREAM_CLOSED"
        assert factory.transport.close_calls == 1
        await wait_until(lambda: relay.dispatcher_task.done() and relay.heartbeat_task.done())
        assert relay.dispatcher_task.cancelled()

    async def test_failed_message_write_tears_session_down(self, channel, factory, signer, prompts):
        relay = make_relay(channel, factory, signer, prompts)
        await relay.open()
        await relay.wait_ready()
        await wait_until(lambda: factory.transport.sent)
        factory.transport.fail_send = True

        assert await relay.relay_inbound({"message": "hello"}, {}) is False

        assert relay.state == RelayState.CLOSED
        assert relay.close_reason == "upstream write failed"
        assert channel.of_type("error")[-1]["error_code"] == "UPSTREAM_CLOSED"
        assert factory.transport.close_calls == 1
        assert relay.dispatcher_task.done()
        assert relay.heartbeat_task.done()

    async def test_message_during_handshake_waits_for_open(self, channel, signer, prompts):
        gate = asyncio.Event()

        class SlowFactory(FakeConnectionFactory):
            async def connect(self, connection_id):
                await gate.wait()
                return await super().connect(connection_id)

        factory = SlowFactory()
        relay = make_relay(channel, factory, signer, prompts)
        await relay.open()

        pending = asyncio.create_task(relay.relay_inbound({"message": "early"}, {}))
        await asyncio.sleep(0)
        assert relay.state == RelayState.CONNECTING
        gate.set()

        assert await asyncio.wait_for(pending, timeout=1.0) is True
        assert [f["message"] for f in factory.transport.sent_frames()] == ["early"]
        assert channel.of_type("error") == []
        await relay.close()

    async def test_unreachable_upstream_keeps_subscription(self, channel, signer, prompts):
        factory = FakeConnectionFactory(
            error=UpstreamConnectionError("ws://localhost:9/ws", "Connection refused")
        )
        relay = make_relay(channel, factory, signer, prompts)

        await relay.open()
        assert await relay.wait_ready() == RelayState.CLOSED

        [error] = channel.of_type("error")
        assert error["error_code"] == "UPSTREAM_UNAVAILABLE"
        assert error["details"] == {"reason": "Connection refused"}
        assert relay.heartbeat_task is None
        assert relay.dispatcher_task is None

    async def test_unconfigured_upstream(self, channel, signer, prompts):
        relay = make_relay(channel, FakeConnectionFactory(configured=False), signer, prompts)

        await relay.open()
        await relay.wait_ready()

        assert channel.of_type("error")[0]["error_code"] == "UPSTREAM_NOT_CONFIGURED"
        assert relay.state == RelayState.CLOSED

    async def test_message_without_upstream_publishes_error(self, channel, signer, prompts):
        relay = make_relay(channel, FakeConnectionFactory(configured=False), signer, prompts)
        await relay.open()
        await relay.wait_ready()

        assert await relay.relay_inbound({"message": "hello"}, {}) is False

        assert channel.of_type("error")[-1]["error_code"] == "UPSTREAM_NOT_CONNECTED"

    async def test_failed_message_keeps_session_open(self, channel, factory, signer, prompts):
        class BrokenBuilder:
            def __init__(self, params, context):
                pass

            def build(self):
                raise ValueError("missing page id")

        relay = SessionRelay(
            session_id="s-1",
            channel=channel,
            connection_factory=factory,
            inbound=InboundAdapter(signer, prompts, builder_factory=BrokenBuilder),
        )
        await relay.open()
        await relay.wait_ready()

        assert await relay.relay_inbound({"message": "hello"}, {}) is False

        error = channel.of_type("error")[-1]
        assert error["error_code"] == "RELAY_FAILED"
        assert "missing page id" in error["content"]
        assert relay.is_open
        await relay.close()

    async def test_upstream_hang_up_tears_session_down(self, channel, factory, signer, prompts):
        relay = make_relay(channel, factory, signer, prompts)
        await relay.open()
        await relay.wait_ready()

        factory.transport.hang_up()
        await asyncio.wait_for(relay.wait_closed(), timeout=1.0)

        assert channel.of_type("error")[-1]["error_code"] == "UPSTREAM_CLOSED"
        assert relay.close_reason == "upstream closed"
        assert factory.transport.close_calls == 1

    async def test_close_is_idempotent(self, channel, factory, signer, prompts):
        closed = []
        relay = make_relay(channel, factory, signer, prompts, on_closed=closed.append)
        await relay.open()
        await relay.wait_ready()

        await relay.close(reason="first")
        await relay.close(reason="second")

        assert closed == ["s-1"]
        assert relay.close_reason == "first"
        assert factory.transport.close_calls == 1

    async def test_close_while_connecting(self, channel, signer, prompts):
        gate = asyncio.Event()

        class SlowFactory(FakeConnectionFactory):
            async def connect(self, connection_id):
                await gate.wait()
                return await super().connect(connection_id)

        relay = make_relay(channel, SlowFactory(), signer, prompts)
        await relay.open()
        await asyncio.sleep(0)

        await relay.close(reason="client disconnected")

        assert relay.state == RelayState.CLOSED
        assert channel.of_type("external_ws_pong") == []

    async def test_open_twice_is_rejected(self, channel, factory, signer, prompts):
        relay = make_relay(channel, factory, signer, prompts)
        await relay.open()

        with pytest.raises(RuntimeError):
            await relay.open()
        await relay.close()


@pytest.mark.unit
class TestRelayManager:
    @pytest.fixture
    def manager(self, channel, factory, signer, prompts) -> RelayManager:
        return RelayManager(
            channel=channel,
            connection_factory=factory,
            signer=signer,
            prompts=prompts,
        )

    async def test_open_and_close_session(self, manager):
        relay = await manager.open_session("s-1")
        await relay.wait_ready()

        assert manager.get("s-1") is relay
        assert manager.session_count == 1
        assert manager.open_count == 1

        assert await manager.close_session("s-1") is True
        assert manager.get("s-1") is None
        assert await manager.close_session("s-1") is False

    async def test_duplicate_session_is_rejected(self, manager):
        await manager.open_session("s-1")

        with pytest.raises(ValueError):
            await manager.open_session("s-1")
        await manager.shutdown()

    async def test_failed_setup_forgets_the_relay(self, channel, signer, prompts):
        manager = RelayManager(
            channel=channel,
            connection_factory=FakeConnectionFactory(configured=False),
            signer=signer,
            prompts=prompts,
        )

        relay = await manager.open_session("s-1")
        await relay.wait_ready()

        assert manager.session_count == 0

    async def test_shutdown_closes_every_relay(self, manager, factory):
        relays = [await manager.open_session(f"s-{i}") for i in range(3)]
        for relay in relays:
            await relay.wait_ready()

        await manager.shutdown()

        assert manager.session_count == 0
        assert all(relay.state == RelayState.CLOSED for relay in relays)
        assert all(t.close_calls == 1 for t in factory.transports)
