"""
mcpterm tool server: exposes registered tools to one streaming client.

Transport (MCP SSE style):
  GET  /mcp-server/start     client connects here; receives an 'endpoint'
                             event pointing to /mcp-server/messages?sessionId=<id>,
                             then one 'message' event per response frame
  POST /mcp-server/messages  client sends JSON-RPC requests here (202 Accepted);
                             responses are delivered on the stream
  GET  /health               health probe

Only one stream is bound at a time.  A new stream supersedes the old one,
which receives a 'close' event and ends.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .channel import BoundChannel, SessionChannelManager
from .config import CONFIG_PATH, AppConfig, app_config, load_config
from .dispatcher import RequestDispatcher
from .errors import ChannelClosedError, ChannelNotBoundError, MalformedRequestError, MCPTermError
from .protocol import TaggedError, error_frame
from .registry import ToolRegistry
from .sse import KEEPALIVE, SSE_HEADERS, format_event
from .tools import default_registry

_log = logging.getLogger("mcpterm.server")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _rpc_error(exc: MCPTermError, status_code: int, token: Any = None, code: str | None = None) -> JSONResponse:
    tagged = exc.to_tagged()
    if code:
        tagged = TaggedError(code=code, message=tagged.message, details=tagged.details)
    return JSONResponse(status_code=status_code, content=error_frame(token, tagged))


async def event_stream(
    manager: SessionChannelManager,
    channel: BoundChannel,
    request: Any,
    *,
    messages_path: str,
    keepalive: float | None,
) -> AsyncIterator[str]:
    yield format_event("endpoint", f"{messages_path}?sessionId={channel.channel_id}")
    try:
        async for frame in channel.frames(keepalive=keepalive):
            if await request.is_disconnected():
                return
            if frame is None:
                yield KEEPALIVE
                continue
            yield format_event("message", frame)
        yield format_event("close", {"reason": channel.close_reason or "closed"})
    finally:
        manager.unbind(channel)
        _log.info("SSE stream %s ended", channel.channel_id)


def create_app(
    config: AppConfig | None = None,
    *,
    registry: ToolRegistry | None = None,
    manager: SessionChannelManager | None = None,
) -> FastAPI:
    cfg = config or app_config()
    if manager is None:
        dispatcher = RequestDispatcher(
            registry or default_registry(),
            server_name=cfg.server_name,
            server_version=cfg.server_version,
        )
        manager = SessionChannelManager(dispatcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await manager.aclose()

    app = FastAPI(title=cfg.server_name, version=cfg.server_version, lifespan=lifespan)
    app.state.manager = manager
    app.state.config = cfg

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cfg.cors_origin],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        _log.info("%s %s", request.method, request.url.path)
        return await call_next(request)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> Response:
        _log.error("Unhandled error [%s %s]: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(status_code=500, content={"error": {"code": -32000, "message": "Internal server error"}})

    @app.get(cfg.stream_path)
    async def stream(request: Request) -> StreamingResponse:
        channel = BoundChannel()
        manager.bind(channel)
        _log.info("MCP client connected via SSE (%s)", channel.channel_id)
        return StreamingResponse(
            event_stream(
                manager,
                channel,
                request,
                messages_path=cfg.messages_path,
                keepalive=cfg.keepalive_seconds,
            ),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.post(cfg.messages_path)
    async def messages(request: Request, sessionId: str = "") -> Response:
        body = await request.body()
        _log.debug("Body: %s", body.decode("utf-8", errors="replace"))
        try:
            manager.route_request(body, session_id=sessionId or None)
        except ChannelNotBoundError as exc:
            return _rpc_error(exc, 503)
        except ChannelClosedError as exc:
            return _rpc_error(exc, 410)
        except MalformedRequestError as exc:
            code = "parse_error" if exc.details.get("parse_error") else None
            return _rpc_error(exc, 400, token=exc.token, code=code)
        return Response(content="", status_code=202)

    @app.get("/health")
    async def health() -> dict:
        return {
            "ok": True,
            "state": manager.state.value,
            "in_flight": manager.in_flight,
            "tools": manager.dispatcher.registry.names(),
        }

    return app


def main(host: str | None = None, port: int | None = None, config_path=CONFIG_PATH) -> None:
    cfg = app_config(load_config(config_path))
    logging.basicConfig(level=getattr(logging, cfg.log_level), format=LOG_FORMAT)
    bind_host = host or cfg.host
    bind_port = port or cfg.port
    _log.info("MCP server running at http://%s:%d%s", bind_host, bind_port, cfg.stream_path)
    uvicorn.run(create_app(cfg), host=bind_host, port=bind_port, log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
