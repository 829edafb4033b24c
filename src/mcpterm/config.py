from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

# Default server endpoint – override via MCPTERM_SERVER_URL env var or config file.
_DEFAULT_SERVER_URL = os.environ.get("MCPTERM_SERVER_URL", "http://localhost:3002/mcp-server/start")

CONFIG_PATH = Path.home() / ".config" / "mcpterm" / "config.yml"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class AppConfig:
    # Client
    server_url: str = _DEFAULT_SERVER_URL
    client_name: str = "MyMCPClient"
    client_version: str = "0.1.0"
    call_timeout: float = 10.0         # seconds before a pending invocation fails
    connect_timeout: float = 10.0      # seconds to wait for the endpoint event + handshake
    # Server
    host: str = "127.0.0.1"
    port: int = 3002
    cors_origin: str = "http://localhost:3000"
    server_name: str = "EchoServer"
    server_version: str = "1.0.0"
    stream_path: str = "/mcp-server/start"
    messages_path: str = "/mcp-server/messages"
    keepalive_seconds: float = 15.0
    log_level: str = "INFO"
    config_version: int = 1


def _positive_float(value: Any, default: float) -> float:
    return float(value) if isinstance(value, (int, float)) and not isinstance(value, bool) and float(value) > 0 else default


def _non_empty(value: Any, default: str) -> str:
    return value.strip() if isinstance(value, str) and value.strip() else default


def _path(value: Any, default: str) -> str:
    value = _non_empty(value, default)
    return value if value.startswith("/") else default


def _validate(cfg: dict[str, Any]) -> dict[str, Any]:
    defaults = AppConfig().__dict__.copy()
    merged = {**defaults, **{k: v for k, v in cfg.items() if k in defaults}}
    for key in ("server_url", "client_name", "client_version", "host", "cors_origin", "server_name", "server_version"):
        merged[key] = _non_empty(merged.get(key), defaults[key])
    for key in ("call_timeout", "connect_timeout", "keepalive_seconds"):
        merged[key] = _positive_float(merged.get(key), defaults[key])
    raw_port = merged.get("port")
    merged["port"] = int(raw_port) if isinstance(raw_port, int) and not isinstance(raw_port, bool) and 0 < raw_port < 65536 else defaults["port"]
    merged["stream_path"] = _path(merged.get("stream_path"), defaults["stream_path"])
    merged["messages_path"] = _path(merged.get("messages_path"), defaults["messages_path"])
    if merged["stream_path"] == merged["messages_path"]:
        merged["stream_path"], merged["messages_path"] = defaults["stream_path"], defaults["messages_path"]
    level = str(merged.get("log_level", "")).upper()
    merged["log_level"] = level if level in _LOG_LEVELS else defaults["log_level"]
    merged["config_version"] = defaults["config_version"]
    return merged


def load_config(path: Path = CONFIG_PATH) -> dict[str, Any]:
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        cfg = _validate({})
        save_config(cfg, path)
        return cfg

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = _validate(raw if isinstance(raw, dict) else {})
    if cfg != raw:
        save_config(cfg, path)
    return cfg


def save_config(cfg: dict[str, Any], path: Path = CONFIG_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    validated = _validate(cfg)
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(yaml.safe_dump(validated, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)


def app_config(cfg: dict[str, Any] | None = None) -> AppConfig:
    return AppConfig(**_validate(cfg or {}))
