from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from .errors import DuplicateToolError, ToolError, ToolExecutionError, ToolValidationError, UnknownToolError

ToolHandler = Callable[[Any], Any]


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    name: str
    schema: type[BaseModel]
    handler: ToolHandler
    description: str = ""

    def definition(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.schema.model_json_schema(),
        }


class ToolRegistry:
    """Name → (schema, handler) table consulted by the dispatcher.

    Handlers receive the validated pydantic model and may be plain or async
    callables.  Whatever a handler raises is reported as a
    :class:`ToolExecutionError`, so callers only ever see :class:`ToolError`.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}

    def register(
        self,
        name: str,
        schema: type[BaseModel],
        handler: ToolHandler,
        description: str = "",
    ) -> ToolDescriptor:
        if name in self._tools:
            raise DuplicateToolError(f"Tool already registered: {name}")
        descriptor = ToolDescriptor(name=name, schema=schema, handler=handler, description=description)
        self._tools[name] = descriptor
        return descriptor

    def tool(self, name: str, schema: type[BaseModel], description: str = "") -> Callable[[ToolHandler], ToolHandler]:
        def _decorator(handler: ToolHandler) -> ToolHandler:
            self.register(name, schema, handler, description or (inspect.getdoc(handler) or ""))
            return handler

        return _decorator

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list_tools(self) -> list[dict[str, Any]]:
        return [descriptor.definition() for descriptor in self._tools.values()]

    def validate(self, name: str, raw_args: Any) -> BaseModel:
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise UnknownToolError(f"Unknown tool: {name}")
        try:
            return descriptor.schema.model_validate(raw_args if raw_args is not None else {})
        except ValidationError as exc:
            fields = [
                f"{'.'.join(str(part) for part in err['loc']) or '<args>'}: {err['msg']}"
                for err in exc.errors()
            ]
            raise ToolValidationError(
                f"Invalid arguments for {name}: " + "; ".join(fields),
                fields=fields,
            ) from exc

    async def invoke(self, name: str, raw_args: Any) -> Any:
        args = self.validate(name, raw_args)
        handler = self._tools[name].handler
        try:
            result = handler(args)
            if inspect.isawaitable(result):
                result = await result
        except ToolError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ToolExecutionError(f"Tool '{name}' failed: {exc}", details={"exception": type(exc).__name__}) from exc
        return result
