"""Realtime channel: state machine, bounded retry, listener dispatch."""

import asyncio

import pytest

from chatsync.transport.socketio import ChannelState, RealtimeChannel
from tests.conftest import FakeSocketFactory


class TestConnection:
    @pytest.mark.asyncio
    async def test_connect_reaches_connected(self, channel, socket_factory):
        states = []
        channel.add_state_listener(states.append)
        await channel.connect()
        assert channel.state is ChannelState.CONNECTED
        assert channel.connected
        assert states == [ChannelState.CONNECTING, ChannelState.CONNECTED]
        assert socket_factory.transports == ["websocket"]
        await channel.close()

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, channel, socket_factory):
        await channel.connect()
        await channel.connect()
        assert socket_factory.attempts == 1
        await channel.close()

    @pytest.mark.asyncio
    async def test_retries_until_connected(self):
        factory = FakeSocketFactory(failures=2)
        channel = RealtimeChannel("http://chat.test", reconnection_delay=0, client_factory=factory)
        await channel.connect()
        assert channel.state is ChannelState.CONNECTED
        assert factory.attempts == 3
        await channel.close()

    @pytest.mark.asyncio
    async def test_gives_up_after_five_attempts_until_explicit_connect(self):
        factory = FakeSocketFactory(failures=100)
        channel = RealtimeChannel("http://chat.test", reconnection_delay=0, client_factory=factory)
        await channel.connect()
        assert channel.state is ChannelState.DISCONNECTED
        assert factory.attempts == 5

        factory.failures = 0
        await channel.connect()
        assert channel.state is ChannelState.CONNECTED
        assert factory.attempts == 6
        await channel.close()

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_retry(self):
        factory = FakeSocketFactory(failures=100)
        channel = RealtimeChannel("http://chat.test", reconnection_delay=10, client_factory=factory)
        connecting = asyncio.create_task(channel.connect())
        for _ in range(5):
            await asyncio.sleep(0)
        assert channel.state is ChannelState.CONNECTING
        assert factory.attempts == 1

        await channel.disconnect()
        assert channel.state is ChannelState.DISCONNECTED
        await asyncio.wait_for(connecting, timeout=1)
        assert factory.attempts == 1
        await channel.close()

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, channel):
        states = []
        channel.add_state_listener(states.append)
        await channel.disconnect()
        assert states == []

        await channel.connect()
        await channel.disconnect()
        await channel.disconnect()
        assert states == [ChannelState.CONNECTING, ChannelState.CONNECTED, ChannelState.DISCONNECTED]
        await channel.close()

    @pytest.mark.asyncio
    async def test_transient_drop_reconnects(self, channel, socket_factory):
        await channel.connect()
        await socket_factory.current.drop()
        assert channel.state is ChannelState.CONNECTING
        for _ in range(5):
            await asyncio.sleep(0)
        assert channel.state is ChannelState.CONNECTED
        assert socket_factory.attempts == 2
        await channel.close()


class TestEmit:
    @pytest.mark.asyncio
    async def test_emit_while_disconnected_is_dropped_quietly(self, channel, socket_factory):
        channel.emit("chat message", {"text": "hi"})
        await channel.flush()
        assert socket_factory.emitted == []

    @pytest.mark.asyncio
    async def test_emit_while_connected_sends(self, channel, socket_factory):
        await channel.connect()
        channel.emit("chat message", {"text": "hi"})
        await channel.flush()
        assert socket_factory.emitted == [("chat message", {"text": "hi"})]
        await channel.close()


class TestListeners:
    @pytest.mark.asyncio
    async def test_listeners_run_in_registration_order(self, channel, socket_factory):
        calls = []

        def first(payload):
            calls.append(("first", payload))

        async def second(payload):
            calls.append(("second", payload))

        channel.on("chat message", first)
        channel.on("chat message", second)
        await channel.connect()
        await socket_factory.current.deliver("chat message", {"n": 1})
        await socket_factory.current.deliver("chat message", {"n": 2})
        await channel.flush()
        assert calls == [
            ("first", {"n": 1}), ("second", {"n": 1}),
            ("first", {"n": 2}), ("second", {"n": 2}),
        ]
        await channel.close()

    @pytest.mark.asyncio
    async def test_off_removes_listener(self, channel, socket_factory):
        calls = []
        channel.on("chat message", calls.append)
        channel.off("chat message", calls.append)
        channel.off("chat message", calls.append)
        await channel.connect()
        await socket_factory.current.deliver("chat message", {"n": 1})
        await channel.flush()
        assert calls == []
        await channel.close()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, channel, socket_factory):
        calls = []

        def broken(payload):
            raise RuntimeError("boom")

        channel.on("chat message", broken)
        channel.on("chat message", calls.append)
        await channel.connect()
        await socket_factory.current.deliver("chat message", {"n": 1})
        await channel.flush()
        assert calls == [{"n": 1}]
        await channel.close()

    @pytest.mark.asyncio
    async def test_lifecycle_events_are_not_dispatched(self, channel, socket_factory):
        calls = []
        channel.on("connect_error", calls.append)
        channel.on("error", calls.append)
        await channel.connect()
        await socket_factory.current.deliver("connect_error", {"message": "x"})
        await socket_factory.current.deliver("error", "bad")
        await channel.flush()
        assert calls == []
        await channel.close()

    @pytest.mark.asyncio
    async def test_queued_event_after_disconnect_is_dropped(self, channel, socket_factory):
        calls = []
        channel.on("chat message", calls.append)
        await channel.connect()
        client = socket_factory.current
        await client.deliver("chat message", {"n": 1})
        await channel.disconnect()
        await channel.flush()
        assert calls == []
        await channel.close()
