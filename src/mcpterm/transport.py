from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import parse_qs, urljoin, urlparse

import httpx

from .channel import BoundChannel
from .errors import (
    ChannelClosedError,
    ChannelNotBoundError,
    MalformedRequestError,
    SideChannelError,
    TransportError,
)
from .sse import SseEvent, aiter_sse

if TYPE_CHECKING:
    from .channel import SessionChannelManager

# The stream stays open indefinitely between responses, so reads are unbounded;
# connect/write stay short.
_STREAM_TIMEOUT = httpx.Timeout(connect=15.0, read=None, write=15.0, pool=5.0)
_SEND_TIMEOUT = httpx.Timeout(15.0)


class Transport(Protocol):
    """What the connection controller needs from the wire."""

    def events(self) -> AsyncIterator[SseEvent]:
        ...

    async def send(self, endpoint: str, frame: dict[str, Any]) -> None:
        ...

    async def aclose(self) -> None:
        ...


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300] or f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text[:300]


class HttpTransport:
    """SSE stream + POST side channel over httpx."""

    def __init__(self, stream_url: str, *, client: httpx.AsyncClient | None = None, headers: dict[str, str] | None = None) -> None:
        self.stream_url = stream_url
        self.headers = headers
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        # An owned client is recreated after aclose() so the transport can reconnect.
        if self._client is None or (self._owns_client and self._client.is_closed):
            self._client = httpx.AsyncClient(timeout=_STREAM_TIMEOUT, headers=self.headers)
        return self._client

    def endpoint_url(self, endpoint: str) -> str:
        return urljoin(self.stream_url, endpoint)

    async def events(self) -> AsyncIterator[SseEvent]:
        try:
            async with self.client.stream(
                "GET",
                self.stream_url,
                headers={"Accept": "text/event-stream"},
                timeout=_STREAM_TIMEOUT,
            ) as response:
                if response.status_code >= 400:
                    raise TransportError(f"Stream failed with HTTP {response.status_code}")
                async for event in aiter_sse(response.aiter_lines()):
                    yield event
        except httpx.TimeoutException as exc:
            raise TransportError("Stream timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Stream network error: {exc}") from exc

    async def send(self, endpoint: str, frame: dict[str, Any]) -> None:
        url = self.endpoint_url(endpoint)
        try:
            response = await self.client.post(url, json=frame, timeout=_SEND_TIMEOUT)
        except httpx.TimeoutException as exc:
            raise TransportError(f"Request timed out: {endpoint}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error on {endpoint}: {exc}") from exc
        status = response.status_code
        if status < 400:
            return
        message = _error_message(response)
        if status == 503:
            raise ChannelNotBoundError(message)
        if status == 410:
            raise ChannelClosedError(message)
        if status == 400:
            raise MalformedRequestError(message, token=frame.get("id"))
        raise SideChannelError(f"HTTP {status} on {endpoint}: {message}", status_code=status)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


class LocalTransport:
    """In-process loopback onto a :class:`SessionChannelManager`.

    Produces the same event sequence as the HTTP server without a socket,
    for embedding a server and client in one event loop.
    """

    def __init__(self, manager: "SessionChannelManager", *, messages_path: str = "/mcp-server/messages") -> None:
        self.manager = manager
        self.messages_path = messages_path
        self.channel: BoundChannel | None = None

    async def events(self) -> AsyncIterator[SseEvent]:
        channel = BoundChannel()
        self.channel = channel
        self.manager.bind(channel)
        try:
            yield SseEvent("endpoint", f"{self.messages_path}?sessionId={channel.channel_id}")
            async for frame in channel.frames():
                yield SseEvent("message", json.dumps(frame))
            yield SseEvent("close", json.dumps({"reason": channel.close_reason or "closed"}))
        finally:
            self.manager.unbind(channel)

    async def send(self, endpoint: str, frame: dict[str, Any]) -> None:
        session = parse_qs(urlparse(endpoint).query).get("sessionId", [None])[0]
        # Round-trip through JSON like the HTTP side channel does.
        self.manager.route_request(json.dumps(frame), session_id=session)
        await asyncio.sleep(0)

    async def aclose(self) -> None:
        if self.channel is not None:
            self.manager.unbind(self.channel)
