from __future__ import annotations

import itertools
import json
from collections.abc import Callable
from typing import Any

from .errors import MCPTermError
from .protocol import Err, Ok, Outcome
from .state import EntryState, LogEntry, Sender

PROCESSING_TEXT = "Processing..."
ERROR_PREFIX = "Error: "

Listener = Callable[[LogEntry], None]


class LogTransitionError(MCPTermError):
    code = "log_transition"


def render_payload(tool: str | None, payload: Any) -> str:
    """Text shown for a successful tool result."""
    if tool == "echo" and isinstance(payload, dict) and "message" in payload:
        return str(payload["message"])
    if tool == "add" and isinstance(payload, dict) and "result" in payload:
        return str(payload["result"])
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


class SessionLog:
    """Ordered log of user, server and system entries.

    A processing entry is replaced exactly once, under the same id, by the
    final entry describing how its invocation settled.
    """

    def __init__(self) -> None:
        self._entries: dict[str, LogEntry] = {}
        self._ids = itertools.count(1)
        self._listeners: list[Listener] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    def __getitem__(self, entry_id: str) -> LogEntry:
        return self._entries[entry_id]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, entry: LogEntry) -> None:
        for listener in list(self._listeners):
            listener(entry)

    def _store(self, entry: LogEntry) -> LogEntry:
        self._entries[entry.id] = entry
        self._notify(entry)
        return entry

    def append(self, sender: Sender, text: str, tool: str | None = None) -> LogEntry:
        return self._store(LogEntry(id=f"e{next(self._ids)}", sender=sender, text=text, tool=tool))

    def on_invocation_start(self, tool: str) -> str:
        entry = LogEntry(
            id=f"e{next(self._ids)}",
            sender=Sender.SERVER,
            text=PROCESSING_TEXT,
            tool=tool,
            state=EntryState.PROCESSING,
        )
        return self._store(entry).id

    def on_invocation_settled(self, entry_id: str, outcome: Outcome) -> LogEntry:
        current = self._entries.get(entry_id)
        if current is None:
            raise LogTransitionError(f"Unknown log entry: {entry_id}", details={"id": entry_id})
        if not current.processing:
            raise LogTransitionError(f"Log entry {entry_id} already settled", details={"id": entry_id})
        if isinstance(outcome, Ok):
            final = LogEntry(
                id=entry_id,
                sender=Sender.SERVER,
                text=render_payload(current.tool, outcome.value),
                tool=current.tool,
            )
        elif isinstance(outcome, Err):
            final = LogEntry(
                id=entry_id,
                sender=Sender.SYSTEM,
                text=f"{ERROR_PREFIX}{outcome.error.message}",
                tool=current.tool,
                metadata={"code": outcome.error.code},
            )
        else:
            raise TypeError(f"not an outcome: {outcome!r}")
        return self._store(final)

    def processing_ids(self) -> list[str]:
        return [entry.id for entry in self._entries.values() if entry.processing]

    def entries(self) -> list[LogEntry]:
        return list(self._entries.values())

    def clear(self) -> None:
        self._entries.clear()
