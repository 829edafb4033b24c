"""
Tests for the server session: SessionChannelManager, BoundChannel and
RequestDispatcher, wired together without HTTP.
"""
from __future__ import annotations

import asyncio
import sys

import pytest
from pydantic import BaseModel

sys.path.insert(0, "src")

from mcpterm.channel import BoundChannel, ChannelState, SessionChannelManager
from mcpterm.dispatcher import RequestDispatcher
from mcpterm.errors import ChannelClosedError, ChannelNotBoundError, MalformedRequestError
from mcpterm.protocol import notification_frame, parse_request, request_frame
from mcpterm.tools import default_registry


def _manager() -> SessionChannelManager:
    return SessionChannelManager(RequestDispatcher(default_registry()))


async def _next_frame(channel: BoundChannel) -> dict:
    frames = channel.frames()
    try:
        return await asyncio.wait_for(frames.__anext__(), timeout=1.0)
    finally:
        await frames.aclose()


class TestBoundChannel:
    @pytest.mark.asyncio
    async def test_frames_in_order_then_stop_on_close(self):
        channel = BoundChannel("abc")
        channel.write({"id": 1})
        channel.write({"id": 2})
        channel.close("superseded")
        seen = [frame async for frame in channel.frames()]
        assert seen == [{"id": 1}, {"id": 2}]
        assert channel.close_reason == "superseded"

    @pytest.mark.asyncio
    async def test_write_after_close_raises(self):
        channel = BoundChannel()
        channel.close()
        channel.close("again")
        assert channel.close_reason == "closed"
        with pytest.raises(ChannelClosedError):
            channel.write({"id": 1})

    @pytest.mark.asyncio
    async def test_keepalive_yields_none_when_idle(self):
        channel = BoundChannel()
        frames = channel.frames(keepalive=0.01)
        assert await frames.__anext__() is None
        await frames.aclose()


class TestSessionChannelManager:
    @pytest.mark.asyncio
    async def test_route_before_bind_fails(self):
        manager = _manager()
        with pytest.raises(ChannelNotBoundError) as exc_info:
            manager.route_request(request_frame(1, "ping"))
        assert str(exc_info.value) == "SSE transport not started"
        assert manager.in_flight == 0

    @pytest.mark.asyncio
    async def test_bind_supersedes_previous_channel(self):
        manager = _manager()
        first = BoundChannel("one")
        second = BoundChannel("two")
        assert manager.bind(first) is None
        assert manager.bind(second) is first
        assert first.closed and first.close_reason == "superseded"
        assert manager.channel is second
        with pytest.raises(ChannelClosedError):
            manager.route_request(request_frame(1, "ping"), session_id="one")

    @pytest.mark.asyncio
    async def test_unbind_of_stale_channel_keeps_current(self):
        manager = _manager()
        first = BoundChannel("one")
        manager.bind(first)
        second = BoundChannel("two")
        manager.bind(second)
        manager.unbind(first)
        assert manager.state is ChannelState.BOUND
        assert manager.channel is second

    @pytest.mark.asyncio
    async def test_unbind_closes_session(self):
        manager = _manager()
        channel = BoundChannel("one")
        manager.bind(channel)
        manager.unbind()
        assert manager.state is ChannelState.CLOSED
        assert channel.closed
        with pytest.raises(ChannelClosedError):
            manager.route_request(request_frame(1, "ping"), session_id="one")
        with pytest.raises(ChannelNotBoundError):
            manager.route_request(request_frame(1, "ping"))

    @pytest.mark.asyncio
    async def test_route_delivers_response_on_channel(self):
        manager = _manager()
        channel = BoundChannel("abc")
        manager.bind(channel)
        task = manager.route_request(
            request_frame(3, "tools/call", {"name": "add", "arguments": {"a": 2, "b": 3}}),
            session_id="abc",
        )
        await task
        frame = await _next_frame(channel)
        assert frame["id"] == 3
        assert frame["result"]["structuredContent"] == {"result": 5}
        assert manager.in_flight == 0

    @pytest.mark.asyncio
    async def test_malformed_request_raised_synchronously(self):
        manager = _manager()
        manager.bind(BoundChannel())
        with pytest.raises(MalformedRequestError):
            manager.route_request(b"{oops")
        assert manager.in_flight == 0

    @pytest.mark.asyncio
    async def test_aclose_cancels_dispatches(self):
        registry = default_registry()
        gate = asyncio.Event()

        class _Args(BaseModel):
            pass

        async def wait(_: _Args) -> str:
            await gate.wait()
            return "done"

        registry.register("wait", _Args, wait)
        manager = SessionChannelManager(RequestDispatcher(registry))
        manager.bind(BoundChannel())
        task = manager.route_request(request_frame(1, "tools/call", {"name": "wait"}))
        await asyncio.sleep(0)
        assert manager.in_flight == 1
        await manager.aclose()
        assert task.cancelled()
        assert manager.state is ChannelState.CLOSED


class TestRequestDispatcher:
    @pytest.mark.asyncio
    async def test_initialize_reports_server_info(self):
        dispatcher = RequestDispatcher(default_registry())
        frame = await dispatcher.respond(parse_request(request_frame(1, "initialize", {
            "protocolVersion": "2024-11-05",
            "clientInfo": {"name": "MyMCPClient", "version": "0.1.0"},
        })))
        assert frame["result"]["serverInfo"] == {"name": "EchoServer", "version": "1.0.0"}
        assert frame["result"]["protocolVersion"] == "2024-11-05"
        assert "tools" in frame["result"]["capabilities"]

    @pytest.mark.asyncio
    async def test_unsupported_protocol_version_falls_back(self):
        dispatcher = RequestDispatcher(default_registry())
        frame = await dispatcher.respond(parse_request(request_frame(1, "initialize", {"protocolVersion": "1999-01-01"})))
        assert frame["result"]["protocolVersion"] == "2024-11-05"

    @pytest.mark.asyncio
    async def test_notification_gets_no_response(self):
        dispatcher = RequestDispatcher(default_registry())
        assert await dispatcher.respond(parse_request(notification_frame("notifications/initialized"))) is None

    @pytest.mark.asyncio
    async def test_tools_list(self):
        dispatcher = RequestDispatcher(default_registry())
        frame = await dispatcher.respond(parse_request(request_frame(2, "tools/list")))
        assert [t["name"] for t in frame["result"]["tools"]] == ["echo", "add"]

    @pytest.mark.asyncio
    async def test_unknown_method(self):
        dispatcher = RequestDispatcher(default_registry())
        frame = await dispatcher.respond(parse_request(request_frame(2, "resources/list")))
        assert frame["error"]["code"] == -32601
        assert frame["error"]["data"]["kind"] == "unknown_method"

    @pytest.mark.asyncio
    async def test_unknown_tool_is_tagged_error(self):
        dispatcher = RequestDispatcher(default_registry())
        frame = await dispatcher.respond(parse_request(request_frame(4, "tools/call", {"name": "nope"})))
        assert frame["id"] == 4
        assert frame["error"]["code"] == -32602
        assert frame["error"]["data"]["kind"] == "unknown_tool"

    @pytest.mark.asyncio
    async def test_validation_error_carries_fields(self):
        dispatcher = RequestDispatcher(default_registry())
        frame = await dispatcher.respond(parse_request(request_frame(5, "tools/call", {"name": "echo", "arguments": {}})))
        assert frame["error"]["data"]["kind"] == "validation_error"
        assert frame["error"]["data"]["details"]["fields"]

    @pytest.mark.asyncio
    async def test_handler_failure_is_execution_error(self):
        registry = default_registry()

        class _Args(BaseModel):
            pass

        def fail(_: _Args) -> None:
            raise RuntimeError("disk full")

        registry.register("fail", _Args, fail)
        dispatcher = RequestDispatcher(registry)
        frame = await dispatcher.respond(parse_request(request_frame(6, "tools/call", {"name": "fail"})))
        assert frame["error"]["code"] == -32000
        assert "disk full" in frame["error"]["message"]

    @pytest.mark.asyncio
    async def test_handle_on_closed_channel_raises(self):
        dispatcher = RequestDispatcher(default_registry())
        channel = BoundChannel()
        channel.close()
        with pytest.raises(ChannelClosedError):
            await dispatcher.handle(request_frame(1, "ping"), channel)
