from __future__ import annotations

import logging
from typing import Any

from .channel import BoundChannel
from .errors import ChannelClosedError, MCPTermError, UnknownMethodError
from .protocol import (
    PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    RpcRequest,
    TaggedError,
    ToolCallParams,
    error_frame,
    ok_frame,
    parse_request,
    tool_result,
)
from .registry import ToolRegistry

_log = logging.getLogger(__name__)


class RequestDispatcher:
    def __init__(self, registry: ToolRegistry, *, server_name: str = "EchoServer", server_version: str = "1.0.0") -> None:
        self.registry = registry
        self.server_info = {"name": server_name, "version": server_version}

    def parse(self, raw_request: bytes | str | dict[str, Any] | RpcRequest) -> RpcRequest:
        if isinstance(raw_request, RpcRequest):
            return raw_request
        return parse_request(raw_request)

    async def respond(self, request: RpcRequest) -> dict[str, Any] | None:
        """Run one request and build its response frame (``None`` for notifications)."""
        try:
            result = await self._run(request)
        except MCPTermError as exc:
            if request.is_notification:
                _log.warning("notification %s failed: %s", request.method, exc)
                return None
            return error_frame(request.id, exc.to_tagged())
        except Exception as exc:  # noqa: BLE001
            _log.exception("unexpected error handling %s", request.method)
            if request.is_notification:
                return None
            return error_frame(request.id, TaggedError(code="internal_error", message=f"Internal server error: {exc}"))
        if request.is_notification:
            return None
        return ok_frame(request.id, result)

    async def _run(self, request: RpcRequest) -> Any:
        method = request.method
        params = request.params
        if method == "initialize":
            client_ver = params.get("protocolVersion", PROTOCOL_VERSION)
            agreed_ver = client_ver if client_ver in SUPPORTED_PROTOCOL_VERSIONS else PROTOCOL_VERSION
            client_info = params.get("clientInfo") or {}
            _log.info("initialize from %s %s", client_info.get("name", "?"), client_info.get("version", "?"))
            return {
                "protocolVersion": agreed_ver,
                "capabilities": {"tools": {}},
                "serverInfo": dict(self.server_info),
            }
        if method in ("notifications/initialized", "initialized"):
            return None
        if method == "ping":
            return {}
        if method == "tools/list":
            return {"tools": self.registry.list_tools()}
        if method == "tools/call":
            call = ToolCallParams.model_validate(params)
            payload = await self.registry.invoke(call.name, call.arguments)
            return tool_result(payload)
        raise UnknownMethodError(f"Method not found: {method}")

    async def handle(self, raw_request: bytes | str | dict[str, Any] | RpcRequest, channel: BoundChannel) -> dict[str, Any] | None:
        """Parse, run and write the response onto ``channel``.

        A closed channel is not retried: the client's timeout reports the loss.
        """
        request = self.parse(raw_request)
        response = await self.respond(request)
        if response is None:
            return None
        try:
            channel.write(response)
        except ChannelClosedError:
            _log.warning("dropping response to %r: channel %s closed", request.id, channel.channel_id)
            raise
        return response
