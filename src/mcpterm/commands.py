from __future__ import annotations

import json
import re
import shlex
from dataclasses import dataclass, field

import yaml

_COMMAND = re.compile(r"^@(?P<name>[A-Za-z_][\w.-]*)(?:\s+(?P<rest>.*))?$", re.DOTALL)
_INT = re.compile(r"[+-]?\d+")
_FLOAT = re.compile(r"[+-]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?")


@dataclass(frozen=True)
class ToolCall:
    name: str
    args: dict[str, object] = field(default_factory=dict)


def coerce_value(value: str) -> object:
    """Turn numeric strings into int/float; leave everything else alone."""
    text = value.strip()
    if _INT.fullmatch(text):
        return int(text)
    if _FLOAT.fullmatch(text):
        return float(text)
    return value


def parse_pairs(tokens: list[str]) -> tuple[dict[str, object], str | None]:
    result: dict[str, object] = {}
    for token in tokens:
        key, sep, value = token.partition("=")
        key = key.strip()
        if not sep or not key:
            return {}, f"invalid tool arguments: expected key=value, got {token!r}"
        result[key] = coerce_value(value)
    return result, None


def parse_tool_args(args_text: str) -> tuple[dict[str, object], str | None]:
    if not args_text:
        return {}, None
    cleaned = args_text.strip()
    if cleaned.startswith("```") and cleaned.endswith("```"):
        cleaned = "\n".join(cleaned.splitlines()[1:-1]).strip()
    if not cleaned:
        return {}, None

    if cleaned.startswith("{"):
        parsed: object
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            # YAML flow mappings accept unquoted keys: {a: 1, b: 2}
            try:
                parsed = yaml.safe_load(cleaned)
            except yaml.YAMLError as exc:
                return {}, f"invalid tool arguments: {exc}"
        if isinstance(parsed, dict):
            return {str(k): v for k, v in parsed.items()}, None
        return {}, "invalid tool arguments: expected object payload"

    try:
        tokens = shlex.split(cleaned)
    except ValueError as exc:
        return {}, f"invalid tool arguments: {exc}"
    return parse_pairs(tokens)


def _parse_add(rest: str) -> tuple[ToolCall | None, str | None]:
    parts = rest.split()
    if len(parts) != 2:
        return None, "usage: @add <a> <b>"
    values = [coerce_value(part) for part in parts]
    if not all(isinstance(v, (int, float)) for v in values):
        return None, f"@add expects two numbers, got {rest!r}"
    return ToolCall("add", {"a": values[0], "b": values[1]}), None


def parse_command(text: str) -> tuple[ToolCall | None, str | None]:
    """Parse one line typed into the terminal.

    ``(None, None)`` means the line is not a command at all.
    """
    stripped = text.strip()
    if not stripped.startswith("@"):
        return None, None
    match = _COMMAND.match(stripped)
    if match is None:
        return None, f"unrecognized command: {stripped}"
    name = match.group("name")
    rest = (match.group("rest") or "").strip()

    if name == "echo":
        if not rest:
            return None, "usage: @echo <message>"
        if rest.startswith("{"):
            args, error = parse_tool_args(rest)
            if error is None and "message" in args:
                return ToolCall("echo", args), None
        return ToolCall("echo", {"message": rest}), None

    if name == "add" and rest and not rest.startswith("{") and "=" not in rest:
        return _parse_add(rest)

    args, error = parse_tool_args(rest)
    if error is not None:
        return None, error
    return ToolCall(name, args), None
