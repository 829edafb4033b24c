from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from textual.binding import Binding


@dataclass(frozen=True)
class KeybindSpec:
    key: str
    action: str
    label: str


KEYBINDS: list[KeybindSpec] = [
    KeybindSpec("f1", "help", "Help"),
    KeybindSpec("f2", "reconnect", "Reconnect"),
    KeybindSpec("f3", "list_tools", "Tools"),
    KeybindSpec("f10", "clear_log", "Clear"),
    KeybindSpec("f11", "cancel", "Cancel"),
    KeybindSpec("f12", "quit", "Quit"),
    KeybindSpec("ctrl+h", "help", "Help"),
]


def binding_list() -> list["Binding"]:
    from textual.binding import Binding

    return [Binding(spec.key, spec.action, spec.label, priority=True) for spec in KEYBINDS]


def display_key(key: str) -> str:
    key_lower = key.lower()
    if key_lower.startswith("f") and key_lower[1:].isdigit():
        return key_lower.upper()
    if key_lower.startswith("ctrl+") and len(key_lower) == 6:
        return "^" + key_lower[-1].upper()
    return key


def render_keybinds() -> str:
    # ctrl+h duplicates F1; keep the bar to one entry per action.
    seen: set[str] = set()
    parts: list[str] = []
    for spec in KEYBINDS:
        if spec.action in seen:
            continue
        seen.add(spec.action)
        parts.append(f"{display_key(spec.key)} {spec.label}")
    return "  ".join(parts)
