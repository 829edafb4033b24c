from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import ChannelClosedError, ChannelNotBoundError

if TYPE_CHECKING:
    from .dispatcher import RequestDispatcher

_log = logging.getLogger(__name__)

_CLOSE = object()


class ChannelState(str, Enum):
    UNBOUND = "unbound"
    BOUND = "bound"
    CLOSED = "closed"


class BoundChannel:
    """Server end of one SSE stream: a queue of frames waiting to be pushed."""

    def __init__(self, channel_id: str | None = None) -> None:
        self.channel_id = channel_id or uuid.uuid4().hex
        self.closed = False
        self.close_reason: str | None = None
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    def write(self, frame: dict[str, Any]) -> None:
        if self.closed:
            raise ChannelClosedError(f"channel {self.channel_id} is closed", details={"reason": self.close_reason})
        self._queue.put_nowait(frame)

    def close(self, reason: str = "closed") -> None:
        if self.closed:
            return
        self.closed = True
        self.close_reason = reason
        self._queue.put_nowait(_CLOSE)

    async def frames(self, keepalive: float | None = None) -> AsyncIterator[dict[str, Any] | None]:
        """Yield queued frames until the channel closes.

        With ``keepalive`` set, ``None`` is yielded after that many idle seconds
        so the caller can emit a keepalive comment.
        """
        while True:
            try:
                if keepalive is None:
                    item = await self._queue.get()
                else:
                    item = await asyncio.wait_for(self._queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield None
                continue
            if item is _CLOSE:
                return
            yield item

    def __repr__(self) -> str:
        return f"BoundChannel({self.channel_id!r}, closed={self.closed})"


class SessionChannelManager:
    """Owns the single bound stream of a server process.

    A new bind supersedes the current channel: the old stream is closed with
    reason ``"superseded"`` so its client fails pending calls right away.
    """

    def __init__(self, dispatcher: "RequestDispatcher") -> None:
        self.dispatcher = dispatcher
        self.state = ChannelState.UNBOUND
        self._channel: BoundChannel | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def channel(self) -> BoundChannel | None:
        return self._channel if self.state is ChannelState.BOUND else None

    def bind(self, channel: BoundChannel) -> BoundChannel | None:
        previous = self._channel if self.state is ChannelState.BOUND else None
        if previous is not None and previous is not channel:
            _log.warning("channel %s superseded by %s", previous.channel_id, channel.channel_id)
            previous.close("superseded")
        self._channel = channel
        self.state = ChannelState.BOUND
        _log.info("channel %s bound", channel.channel_id)
        return previous

    def unbind(self, channel: BoundChannel | None = None) -> None:
        current = self._channel
        if current is None or (channel is not None and channel is not current):
            if channel is not None:
                channel.close()
            return
        current.close()
        self.state = ChannelState.CLOSED
        _log.info("channel %s closed", current.channel_id)

    def channel_for(self, session_id: str | None = None) -> BoundChannel:
        current = self._channel
        if self.state is not ChannelState.BOUND or current is None:
            if current is not None and session_id == current.channel_id:
                raise ChannelClosedError(f"session {session_id} is closed")
            raise ChannelNotBoundError("SSE transport not started")
        if session_id and session_id != current.channel_id:
            raise ChannelClosedError(f"session {session_id} is no longer bound")
        return current

    def route_request(self, raw_request: bytes | str | dict[str, Any], session_id: str | None = None) -> asyncio.Task[Any]:
        """Hand a request to the dispatcher on the current channel.

        Channel and parse errors are raised here, synchronously, so the HTTP
        layer can report them.  The response itself goes out on the stream.
        """
        channel = self.channel_for(session_id)
        request = self.dispatcher.parse(raw_request)
        task = asyncio.create_task(self.dispatcher.handle(request, channel))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, ChannelClosedError):
            _log.error("dispatch task failed: %s", exc)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.unbind()
