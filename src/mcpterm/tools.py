from __future__ import annotations

import logging
from typing import Union

from pydantic import BaseModel, StrictFloat, StrictInt, StrictStr

from .registry import ToolRegistry

_log = logging.getLogger(__name__)

Number = Union[StrictInt, StrictFloat]


class EchoArgs(BaseModel):
    message: StrictStr


class AddArgs(BaseModel):
    a: Number
    b: Number


async def echo(args: EchoArgs) -> dict[str, str]:
    _log.info("echo tool called with message: %s", args.message)
    return {"message": args.message}


async def add(args: AddArgs) -> dict[str, int | float]:
    return {"result": args.a + args.b}


def default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register("echo", EchoArgs, echo, "Return the message unchanged.")
    registry.register("add", AddArgs, add, "Add two numbers.")
    return registry
