from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any

from .correlator import InvocationCorrelator
from .errors import (
    ChannelClosedError,
    ConnectError,
    ConnectionClosedError,
    NotConnectedError,
    ToolExecutionError,
)
from .protocol import PROTOCOL_VERSION, notification_frame, tool_payload, tool_result_error
from .state import ConnectionState
from .transport import HttpTransport, Transport

_log = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState, "BaseException | None"], None]


class ConnectionController:
    """Client end of one streaming session.

    ``connect()`` opens the stream, waits for the server's ``endpoint`` event
    and runs the ``initialize`` handshake.  Tool calls go out on the side
    channel and are matched to stream frames by the correlator.  A failed
    connect leaves the controller ``FAILED``; nothing retries on its own.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        client_name: str = "MyMCPClient",
        client_version: str = "0.1.0",
        call_timeout: float = 10.0,
        connect_timeout: float = 10.0,
        on_state_change: StateListener | None = None,
    ) -> None:
        self.transport = transport
        self.client_name = client_name
        self.client_version = client_version
        self.call_timeout = call_timeout
        self.connect_timeout = connect_timeout
        self.on_state_change = on_state_change
        self.state = ConnectionState.DISCONNECTED
        self.error: BaseException | None = None
        self.server_info: dict[str, Any] = {}
        self.protocol_version: str | None = None
        self._endpoint: str | None = None
        self._reader: asyncio.Task[None] | None = None
        self._correlator = InvocationCorrelator(self._send)

    @classmethod
    def from_url(cls, server_url: str, **kwargs: Any) -> "ConnectionController":
        return cls(HttpTransport(server_url), **kwargs)

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def pending_count(self) -> int:
        return self._correlator.pending_count

    def _set_state(self, state: ConnectionState, error: BaseException | None = None) -> None:
        self.error = error
        if state is self.state:
            return
        _log.info("connection %s -> %s%s", self.state.value, state.value, f" ({error})" if error else "")
        self.state = state
        if self.on_state_change is not None:
            self.on_state_change(state, error)

    async def _send(self, frame: dict[str, Any]) -> None:
        if self._endpoint is None:
            raise NotConnectedError("Side channel endpoint not available")
        try:
            await self.transport.send(self._endpoint, frame)
        except ChannelClosedError as exc:
            # Our session closed before the reader saw the stream end.
            raise ConnectionClosedError(f"Connection closed: {exc}") from exc

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self.state is ConnectionState.CONNECTED:
            return
        if self.state is ConnectionState.CONNECTING:
            raise ConnectError("Connection attempt already in progress")
        await self._teardown(ConnectionClosedError("Connection reset"))
        self._set_state(ConnectionState.CONNECTING)
        ready: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._reader = asyncio.create_task(self._read_stream(ready))
        try:
            try:
                self._endpoint = await asyncio.wait_for(ready, timeout=self.connect_timeout)
            except asyncio.TimeoutError as exc:
                raise ConnectError(f"No endpoint event within {self.connect_timeout:g}s") from exc
            result = await self._correlator.submit(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": {"name": self.client_name, "version": self.client_version},
                },
                self.connect_timeout,
            )
            await self._send(notification_frame("notifications/initialized"))
        except asyncio.CancelledError:
            await self._teardown(ConnectionClosedError("Connection attempt cancelled"))
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        except Exception as exc:  # noqa: BLE001
            await self._teardown(ConnectionClosedError(f"Connection failed: {exc}"))
            self._set_state(ConnectionState.FAILED, exc)
            _log.error("Error connecting MCP client: %s", exc)
            raise ConnectError(f"Error connecting MCP client: {exc}") from exc
        if isinstance(result, dict):
            self.server_info = dict(result.get("serverInfo") or {})
            self.protocol_version = result.get("protocolVersion")
        self._set_state(ConnectionState.CONNECTED)

    async def _read_stream(self, ready: asyncio.Future[str]) -> None:
        cause: BaseException | None = None
        reason = "stream ended"
        try:
            async with contextlib.aclosing(self.transport.events()) as events:
                async for event in events:
                    if event.event == "endpoint":
                        if not ready.done():
                            ready.set_result(event.data)
                        continue
                    if event.event == "message":
                        self._correlator.on_frame(event.data)
                        continue
                    if event.event == "close":
                        reason = _close_reason(event.data)
                        break
                    _log.debug("ignoring SSE event %r", event.event)
        except asyncio.CancelledError:
            if not ready.done():
                ready.set_exception(ConnectionClosedError("Connection closed by client"))
            raise
        except Exception as exc:  # noqa: BLE001
            cause = exc
        self._stream_ended(ready, reason, cause)

    def _stream_ended(self, ready: asyncio.Future[str], reason: str, cause: BaseException | None) -> None:
        if not ready.done():
            ready.set_exception(cause or ConnectionClosedError(f"Stream closed before endpoint: {reason}"))
        self._endpoint = None
        rejected = self._correlator.reject_all(ConnectionClosedError(f"Connection closed: {cause or reason}"))
        if rejected:
            _log.warning("stream ended with %d pending invocation(s)", rejected)
        if self.state is ConnectionState.CONNECTED:
            if cause is not None:
                self._set_state(ConnectionState.FAILED, cause)
            else:
                self._set_state(ConnectionState.DISCONNECTED)

    async def _teardown(self, error: BaseException) -> None:
        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        self._endpoint = None
        self._correlator.reject_all(error)

    async def close(self) -> None:
        await self._teardown(ConnectionClosedError("Connection closed by client"))
        await self.transport.aclose()
        self._set_state(ConnectionState.DISCONNECTED)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def _require_connected(self) -> None:
        if self.state is not ConnectionState.CONNECTED:
            raise NotConnectedError(f"MCP client not connected (state={self.state.value})")

    async def invoke(self, tool: str, args: dict[str, Any] | None = None, timeout: float | None = None) -> Any:
        self._require_connected()
        result = await self._correlator.submit(
            "tools/call",
            {"name": tool, "arguments": dict(args or {})},
            self.call_timeout if timeout is None else timeout,
            label=tool,
        )
        error = tool_result_error(result)
        if error is not None:
            raise ToolExecutionError(f"Tool '{tool}' error: {error}")
        return tool_payload(result)

    async def list_tools(self, timeout: float | None = None) -> list[dict[str, Any]]:
        self._require_connected()
        result = await self._correlator.submit("tools/list", {}, self.call_timeout if timeout is None else timeout)
        tools = result.get("tools", []) if isinstance(result, dict) else []
        return [t for t in tools if isinstance(t, dict)]

    async def ping(self, timeout: float | None = None) -> None:
        self._require_connected()
        await self._correlator.submit("ping", {}, self.call_timeout if timeout is None else timeout)


def _close_reason(data: str) -> str:
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return data or "closed"
    if isinstance(payload, dict):
        return str(payload.get("reason") or "closed")
    return "closed"
