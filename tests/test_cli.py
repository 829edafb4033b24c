from __future__ import annotations

import json
import sys
from argparse import Namespace
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from mcpterm import cli
from mcpterm.config import AppConfig
from mcpterm.errors import NotConnectedError


@pytest.fixture(autouse=True)
def _no_config_file(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "load_config", lambda: {})


def test_call_requires_tool() -> None:
    parser = cli.build_parser()
    with pytest.raises(SystemExit) as exc:
        parser.parse_args(["call"])
    assert exc.value.code == 2


def test_serve_options_parse() -> None:
    args = cli.build_parser().parse_args(["serve", "--host", "0.0.0.0", "--port", "4000"])
    assert (args.command, args.host, args.port) == ("serve", "0.0.0.0", 4000)


def test_main_routes_to_app(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[AppConfig] = []
    monkeypatch.setattr(cli, "app_main", lambda cfg: seen.append(cfg))
    cli.main(["--url", "http://example:9/sse"])
    assert seen[0].server_url == "http://example:9/sse"


def test_main_routes_to_server(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(cli, "serve_main", lambda **kwargs: calls.append(kwargs))
    cli.main(["serve", "--port", "3100"])
    assert calls == [{"host": None, "port": 3100}]


def test_call_args_key_value_and_json() -> None:
    assert cli._call_args(["a=2", "b=3"]) == ({"a": 2, "b": 3}, None)
    assert cli._call_args(['{"message": "hi"}']) == ({"message": "hi"}, None)
    _, error = cli._call_args(["oops"])
    assert error is not None


def test_call_command_bad_args_exit_2(capsys: pytest.CaptureFixture[str]) -> None:
    args = Namespace(url=None, tool="add", args=["oops"], timeout=None)
    assert cli.call_command(args) == 2
    assert "key=value" in capsys.readouterr().err


def test_call_command_prints_payload(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    class _Controller:
        closed = False

        async def connect(self) -> None:
            return None

        async def invoke(self, tool, args, timeout=None):
            return {"result": args["a"] + args["b"]}

        async def close(self) -> None:
            _Controller.closed = True

    monkeypatch.setattr(cli, "_controller", lambda cfg: _Controller())
    args = Namespace(url=None, tool="add", args=["a=2", "b=3"], timeout=1.0)
    assert cli.call_command(args) == 0
    assert json.loads(capsys.readouterr().out) == {"result": 5}
    assert _Controller.closed


def test_call_command_failure_exit_1(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    class _Controller:
        async def connect(self) -> None:
            raise NotConnectedError("MCP client not connected")

        async def close(self) -> None:
            return None

    monkeypatch.setattr(cli, "_controller", lambda cfg: _Controller())
    with pytest.raises(SystemExit) as exc:
        cli.main(["call", "echo", "message=hi"])
    assert exc.value.code == 1
    assert "Error: MCP client not connected" in capsys.readouterr().err
