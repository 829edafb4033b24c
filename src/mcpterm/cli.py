from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys

from .app import main as app_main
from .client import ConnectionController
from .commands import parse_pairs, parse_tool_args
from .config import AppConfig, app_config, load_config
from .errors import MCPTermError
from .server import main as serve_main


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcpterm",
        description="Terminal client and tool server for streaming MCP tool calls.",
    )
    parser.add_argument("--url", help="Stream URL of the tool server (overrides config)")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the tool server")
    serve_parser.add_argument("--host", help="Bind address (default from config)")
    serve_parser.add_argument("--port", type=int, help="Bind port (default from config)")

    call_parser = subparsers.add_parser("call", help="Invoke one tool and print its result as JSON")
    call_parser.add_argument("tool", help="Tool name, e.g. echo or add")
    call_parser.add_argument("args", nargs="*", help="Arguments as key=value pairs or one JSON object")
    call_parser.add_argument("--timeout", type=float, help="Seconds to wait for the result")
    call_parser.set_defaults(func=call_command)

    tools_parser = subparsers.add_parser("tools", help="List the tools the server exposes")
    tools_parser.set_defaults(func=tools_command)

    return parser


def _config(args: argparse.Namespace) -> AppConfig:
    cfg = app_config(load_config())
    if getattr(args, "url", None):
        cfg = dataclasses.replace(cfg, server_url=args.url)
    return cfg


def _controller(cfg: AppConfig) -> ConnectionController:
    return ConnectionController.from_url(
        cfg.server_url,
        client_name=cfg.client_name,
        client_version=cfg.client_version,
        call_timeout=cfg.call_timeout,
        connect_timeout=cfg.connect_timeout,
    )


def _call_args(raw: list[str]) -> tuple[dict[str, object], str | None]:
    if len(raw) == 1 and raw[0].lstrip().startswith("{"):
        return parse_tool_args(raw[0])
    return parse_pairs(raw)


async def _run_call(cfg: AppConfig, tool: str, tool_args: dict[str, object], timeout: float | None) -> int:
    controller = _controller(cfg)
    try:
        await controller.connect()
        payload = await controller.invoke(tool, tool_args, timeout=timeout)
    except MCPTermError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await controller.close()
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
    return 0


async def _run_tools(cfg: AppConfig) -> int:
    controller = _controller(cfg)
    try:
        await controller.connect()
        tools = await controller.list_tools()
    except MCPTermError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await controller.close()
    for tool in tools:
        description = tool.get("description") or ""
        print(f"{tool.get('name')}\t{description}".rstrip())
    return 0


def call_command(args: argparse.Namespace) -> int:
    tool_args, error = _call_args(args.args)
    if error is not None:
        print(f"Error: {error}", file=sys.stderr)
        return 2
    return asyncio.run(_run_call(_config(args), args.tool, tool_args, args.timeout))


def tools_command(args: argparse.Namespace) -> int:
    return asyncio.run(_run_tools(_config(args)))


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        app_main(_config(args))
        return
    if args.command == "serve":
        serve_main(host=args.host, port=args.port)
        return
    if hasattr(args, "func"):
        sys.exit(args.func(args))
    parser.print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
