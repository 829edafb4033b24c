from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class Sender(str, Enum):
    USER = "user"
    SERVER = "server"
    SYSTEM = "system"

    @property
    def label(self) -> str:
        return {"user": "You", "server": "Server", "system": "System"}[self.value]


class EntryState(str, Enum):
    FINAL = "final"
    PROCESSING = "processing"


@dataclass(frozen=True, slots=True)
class LogEntry:
    id: str
    sender: Sender
    text: str
    tool: str | None = None
    state: EntryState = EntryState.FINAL
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def processing(self) -> bool:
        return self.state is EntryState.PROCESSING
