"""JSON-RPC 2.0 framing shared by the server and the client.

Requests travel over the side channel (HTTP POST); responses travel back over
the SSE stream.  Everything crossing that boundary is validated here and turned
into typed values: :class:`RpcRequest` on the server, a ``(token, Outcome)``
pair on the client.  Nothing past this module handles raw JSON envelopes.

Tool failures are carried as a :class:`TaggedError` whose string ``code`` is
independent of the JSON-RPC numeric codes; the numbers only exist in the
mapping tables below.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import MalformedFrameError, MalformedRequestError, MCPTermError

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
SUPPORTED_PROTOCOL_VERSIONS = {"2024-11-05", "2025-03-26"}

Token = Union[int, str]

_RPC_CODES: dict[str, int] = {
    "parse_error": -32700,
    "malformed_request": -32600,
    "unknown_method": -32601,
    "validation_error": -32602,
    "unknown_tool": -32602,
    "internal_error": -32603,
    "execution_error": -32000,
    "channel_not_bound": -32003,
    "channel_closed": -32004,
}

# Used only when a peer sends an error without ``data.kind``.
_CODES_BY_NUMBER: dict[int, str] = {
    -32700: "malformed_request",
    -32600: "malformed_request",
    -32601: "unknown_method",
    -32602: "validation_error",
    -32603: "internal_error",
    -32000: "execution_error",
    -32003: "channel_not_bound",
    -32004: "channel_closed",
}


class TaggedError(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Ok:
    value: Any


@dataclass(frozen=True, slots=True)
class Err:
    error: TaggedError

    @classmethod
    def from_exception(cls, exc: BaseException) -> "Err":
        if isinstance(exc, MCPTermError):
            return cls(exc.to_tagged())
        message = str(exc) or type(exc).__name__
        return cls(TaggedError(code="internal_error", message=message))


Outcome = Union[Ok, Err]


class RpcRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: Token | None = None
    method: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        return self.id is None


class ToolCallParams(BaseModel):
    name: str = Field(min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


class RpcErrorBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: int
    message: str
    data: dict[str, Any] | None = None


class RpcResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: Token | None = None
    result: Any = None
    error: RpcErrorBody | None = None

    @model_validator(mode="before")
    @classmethod
    def _exactly_one(cls, data: Any) -> Any:
        if isinstance(data, dict) and ("result" in data) == ("error" in data):
            raise ValueError("response must carry exactly one of 'result' or 'error'")
        return data


# ---------------------------------------------------------------------------
# Frame builders
# ---------------------------------------------------------------------------

def request_frame(token: Token, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": token, "method": method}
    if params is not None:
        frame["params"] = params
    return frame


def notification_frame(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        frame["params"] = params
    return frame


def ok_frame(token: Token | None, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": token, "result": result}


def error_frame(token: Token | None, error: TaggedError) -> dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": token,
        "error": {
            "code": rpc_code(error.code),
            "message": error.message,
            "data": {"kind": error.code, "details": dict(error.details)},
        },
    }


def rpc_code(kind: str) -> int:
    return _RPC_CODES.get(kind, _RPC_CODES["internal_error"])


def tool_result(payload: Any) -> dict[str, Any]:
    """Wrap a tool payload as an MCP ``CallToolResult``."""
    result: dict[str, Any] = {
        "content": [{"type": "text", "text": json.dumps(payload, ensure_ascii=False)}],
        "isError": False,
    }
    if isinstance(payload, dict):
        result["structuredContent"] = payload
    return result


def tool_payload(result: Any) -> Any:
    """Extract the payload from a ``CallToolResult``.

    Prefers ``structuredContent``; otherwise decodes the first text block as
    JSON and falls back to the raw text when it is not JSON.
    """
    if not isinstance(result, dict):
        return result
    if "structuredContent" in result:
        return result["structuredContent"]
    content = result.get("content")
    if not isinstance(content, list) or not content:
        return result
    first = content[0]
    if not isinstance(first, dict) or not isinstance(first.get("text"), str):
        return result
    try:
        return json.loads(first["text"])
    except json.JSONDecodeError:
        return first["text"]


def tool_result_error(result: Any) -> str | None:
    """Return the error text of a result flagged ``isError``, else ``None``."""
    if not isinstance(result, dict) or not result.get("isError"):
        return None
    content = result.get("content") or []
    if isinstance(content, list) and content and isinstance(content[0], dict):
        text = content[0].get("text")
        if text:
            return str(text)
    return "tool reported an error"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _load(raw: bytes | str | dict[str, Any], error_cls: type[MalformedFrameError]) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise error_cls(f"invalid JSON: {exc}", details={"parse_error": True}) from exc
    if not isinstance(data, dict):
        raise error_cls("frame must be a JSON object")
    return data


def _token_of(data: dict[str, Any]) -> Token | None:
    token = data.get("id")
    return token if isinstance(token, (int, str)) and not isinstance(token, bool) else None


def _describe(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    ]


def parse_request(raw: bytes | str | dict[str, Any]) -> RpcRequest:
    data = _load(raw, MalformedRequestError)
    token = _token_of(data)
    try:
        request = RpcRequest.model_validate(data)
    except ValidationError as exc:
        raise MalformedRequestError(
            "invalid request: " + "; ".join(_describe(exc)), token=token
        ) from exc
    if request.method == "tools/call":
        try:
            ToolCallParams.model_validate(request.params)
        except ValidationError as exc:
            raise MalformedRequestError(
                "invalid tools/call params: " + "; ".join(_describe(exc)), token=token
            ) from exc
    return request


def decode_response(raw: bytes | str | dict[str, Any]) -> tuple[Token, Outcome] | None:
    """Decode a frame from the stream.

    Returns ``None`` for server notifications (frames with a ``method``).
    Raises :class:`MalformedFrameError` for anything that is not a response.
    """
    data = _load(raw, MalformedFrameError)
    if "method" in data and "result" not in data and "error" not in data:
        return None
    try:
        response = RpcResponse.model_validate(data)
    except ValidationError as exc:
        raise MalformedFrameError(
            "invalid response: " + "; ".join(_describe(exc)), token=_token_of(data)
        ) from exc
    if response.id is None:
        raise MalformedFrameError("response without correlation token")
    if response.error is None:
        return response.id, Ok(response.result)
    body = response.error
    data_field = body.data or {}
    kind = data_field.get("kind") or _CODES_BY_NUMBER.get(body.code, "internal_error")
    details = data_field.get("details")
    tagged = TaggedError(
        code=str(kind),
        message=body.message,
        details=details if isinstance(details, dict) else {},
    )
    return response.id, Err(tagged)
