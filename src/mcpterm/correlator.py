"""Pending-invocation table for requests whose replies arrive on the stream.

Every outbound request gets a token and an entry here holding a future and a
timer.  Exactly one of these settles the entry: the matching response frame,
the timer, :meth:`InvocationCorrelator.reject_all`, or the caller being
cancelled.  Settling pops the entry, so whichever path runs second finds
nothing and does nothing.
"""
from __future__ import annotations

import asyncio
import copy
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .errors import InvocationTimeoutError, MalformedFrameError, error_from_tagged
from .protocol import Err, Ok, Token, decode_response, request_frame

_log = logging.getLogger(__name__)

SendFn = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class PendingInvocation:
    token: Token
    label: str
    submitted_at: float
    deadline: float
    result_slot: asyncio.Future[Any]
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)


class InvocationCorrelator:
    def __init__(self, send: SendFn, *, clock: Callable[[], float] | None = None) -> None:
        self._send = send
        self._clock = clock or time.monotonic
        self._counter = itertools.count(1)
        self._pending: dict[Token, PendingInvocation] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending_tokens(self) -> list[Token]:
        return list(self._pending)

    def _next_token(self) -> int:
        token = next(self._counter)
        while token in self._pending:
            token = next(self._counter)
        return token

    async def submit(self, method: str, params: dict[str, Any] | None, timeout: float, *, label: str | None = None) -> Any:
        loop = asyncio.get_running_loop()
        token = self._next_token()
        now = self._clock()
        pending = PendingInvocation(
            token=token,
            label=label or method,
            submitted_at=now,
            deadline=now + timeout,
            result_slot=loop.create_future(),
        )
        pending.timer = loop.call_later(timeout, self._expire, token)
        self._pending[token] = pending
        try:
            try:
                await self._send(request_frame(token, method, params))
            except Exception as exc:  # noqa: BLE001
                self._settle(token, error=exc)
            return await pending.result_slot
        except asyncio.CancelledError:
            if self._settle(token, cancelled=True):
                _log.debug("invocation %s (%s) cancelled by caller", token, pending.label)
            raise

    def _expire(self, token: Token) -> None:
        pending = self._pending.get(token)
        if pending is None:
            return
        elapsed = self._clock() - pending.submitted_at
        self._settle(
            token,
            error=InvocationTimeoutError(
                f"{pending.label} timed out after {elapsed:.1f}s",
                details={"token": token},
            ),
        )

    def _settle(self, token: Token, *, result: Any = None, error: BaseException | None = None, cancelled: bool = False) -> bool:
        pending = self._pending.pop(token, None)
        if pending is None:
            return False
        if pending.timer is not None:
            pending.timer.cancel()
        slot = pending.result_slot
        if not slot.done():
            if cancelled:
                slot.cancel()
            elif error is not None:
                slot.set_exception(error)
            else:
                slot.set_result(result)
        return True

    def on_frame(self, raw: bytes | str | dict[str, Any]) -> bool:
        """Resolve the pending invocation a response frame belongs to.

        Returns ``False`` when the frame is discarded: malformed, a server
        notification, or a token that is unknown or already settled.
        """
        try:
            decoded = decode_response(raw)
        except MalformedFrameError as exc:
            _log.warning("discarding malformed frame: %s", exc)
            return False
        if decoded is None:
            _log.debug("ignoring server notification")
            return False
        token, outcome = decoded
        if token not in self._pending and isinstance(token, str) and token.isdigit():
            token = int(token)
        if token not in self._pending:
            _log.info("discarding frame for unknown or settled token %r", token)
            return False
        if isinstance(outcome, Ok):
            return self._settle(token, result=outcome.value)
        if isinstance(outcome, Err):
            return self._settle(token, error=error_from_tagged(outcome.error))
        raise TypeError(f"not an outcome: {outcome!r}")

    def reject_all(self, error: BaseException) -> int:
        tokens = list(self._pending)
        for token in tokens:
            self._settle(token, error=copy.copy(error))
        return len(tokens)
