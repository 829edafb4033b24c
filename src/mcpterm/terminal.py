from __future__ import annotations

import asyncio
import logging
from typing import Any

from .client import ConnectionController
from .commands import parse_command
from .errors import ConnectError
from .protocol import Err, Ok, Outcome, TaggedError
from .session_log import ERROR_PREFIX, SessionLog
from .state import LogEntry, Sender

_log = logging.getLogger(__name__)

HINT = "Commands: @echo <message>, @add <a> <b>, @<tool> key=value ..."


class TerminalSession:
    """Glue between typed lines, the connection controller and the log."""

    def __init__(self, controller: ConnectionController, log: SessionLog | None = None, *, timeout: float | None = None) -> None:
        self.controller = controller
        self.log = log if log is not None else SessionLog()
        self.timeout = timeout
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def busy(self) -> bool:
        return bool(self._tasks)

    async def connect(self) -> bool:
        target = getattr(self.controller.transport, "stream_url", None) or "local server"
        self.log.append(Sender.SYSTEM, f"Connecting to {target}...")
        try:
            await self.controller.connect()
        except ConnectError as exc:
            self.log.append(Sender.SYSTEM, f"{ERROR_PREFIX}{exc}")
            return False
        info = self.controller.server_info
        label = " ".join(str(part) for part in (info.get("name"), info.get("version")) if part) or "server"
        self.log.append(Sender.SYSTEM, f"Connected to {label}")
        return True

    async def submit(self, text: str) -> LogEntry | None:
        text = text.strip()
        if not text:
            return None
        self.log.append(Sender.USER, text)
        call, error = parse_command(text)
        if error is not None:
            return self.log.append(Sender.SYSTEM, f"{ERROR_PREFIX}{error}")
        if call is None:
            return self.log.append(Sender.SYSTEM, HINT)
        return await self.run_tool(call.name, call.args)

    def spawn(self, text: str) -> asyncio.Task[LogEntry | None]:
        """Run :meth:`submit` in the background so the caller stays responsive."""
        task = asyncio.create_task(self.submit(text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_tool(self, tool: str, args: dict[str, Any] | None = None, timeout: float | None = None) -> LogEntry | None:
        entry_id = self.log.on_invocation_start(tool)
        try:
            payload = await self.controller.invoke(tool, args or {}, self.timeout if timeout is None else timeout)
        except asyncio.CancelledError:
            self._settle(entry_id, Err(TaggedError(code="cancelled", message="Invocation cancelled")))
            raise
        except Exception as exc:  # noqa: BLE001
            _log.debug("invocation of %s failed: %s", tool, exc)
            return self._settle(entry_id, Err.from_exception(exc))
        return self._settle(entry_id, Ok(payload))

    def _settle(self, entry_id: str, outcome: Outcome) -> LogEntry | None:
        # The log may have been cleared while the call was in flight.
        if entry_id not in self.log:
            return None
        return self.log.on_invocation_settled(entry_id, outcome)

    async def cancel_all(self) -> int:
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    async def close(self) -> None:
        await self.cancel_all()
        await self.controller.close()
        self.log.append(Sender.SYSTEM, "Disconnected")
