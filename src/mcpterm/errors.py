from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .protocol import TaggedError


class MCPTermError(RuntimeError):
    """Base error. ``code`` is the transport-independent tag for the failure."""

    code = "internal_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_tagged(self) -> "TaggedError":
        from .protocol import TaggedError

        return TaggedError(code=self.code, message=self.message, details=self.details)


class RemoteError(MCPTermError):
    """A tagged error from the server whose tag the client does not know."""

    def __init__(self, message: str, *, code: str = "internal_error", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details=details)
        self.code = code


# Registry ---------------------------------------------------------------


class ToolError(MCPTermError):
    code = "tool_error"


class UnknownToolError(ToolError):
    code = "unknown_tool"


class DuplicateToolError(ToolError):
    code = "duplicate_tool"


class ToolValidationError(ToolError):
    code = "validation_error"

    def __init__(self, message: str, *, fields: list[str] | None = None, details: dict[str, Any] | None = None) -> None:
        fields = list(fields or (details or {}).get("fields", []))
        super().__init__(message, details={**(details or {}), "fields": fields})
        self.fields = fields


class ToolExecutionError(ToolError):
    code = "execution_error"


# Framing ----------------------------------------------------------------


class MalformedFrameError(MCPTermError):
    code = "malformed_frame"

    def __init__(self, message: str, *, token: int | str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details=details)
        self.token = token


class MalformedRequestError(MalformedFrameError):
    code = "malformed_request"


class UnknownMethodError(MCPTermError):
    code = "unknown_method"


# Server session ---------------------------------------------------------


class ChannelNotBoundError(MCPTermError):
    code = "channel_not_bound"


class ChannelClosedError(MCPTermError):
    code = "channel_closed"


# Client -----------------------------------------------------------------


class ClientError(MCPTermError):
    code = "client_error"


class ConnectError(ClientError):
    code = "connect_failed"


class NotConnectedError(ClientError):
    code = "not_connected"


class ConnectionClosedError(ClientError):
    code = "connection_closed"


class InvocationTimeoutError(ClientError, TimeoutError):
    code = "timeout"


class TransportError(ClientError):
    code = "transport_error"


class SideChannelError(ClientError):
    code = "side_channel_error"

    def __init__(self, message: str, *, status_code: int | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details=details)
        self.status_code = status_code


_TAGGED: dict[str, type[MCPTermError]] = {
    cls.code: cls
    for cls in (
        UnknownToolError,
        DuplicateToolError,
        ToolValidationError,
        ToolExecutionError,
        MalformedRequestError,
        UnknownMethodError,
        ChannelNotBoundError,
        ChannelClosedError,
    )
}


def error_from_tagged(tagged: "TaggedError") -> MCPTermError:
    """Rebuild the typed exception for a tagged error received over the wire."""
    cls = _TAGGED.get(tagged.code)
    if cls is None:
        return RemoteError(tagged.message, code=tagged.code, details=dict(tagged.details))
    return cls(tagged.message, details=dict(tagged.details))
