from __future__ import annotations

import asyncio
import textwrap

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Header, Input, Log, Static

from .client import ConnectionController
from .config import AppConfig, app_config, load_config
from .errors import MCPTermError
from .session_log import SessionLog
from .state import ConnectionState, LogEntry, Sender
from .terminal import TerminalSession
from .ui.keybinds import binding_list, render_keybinds

APP_CSS = """
#status-bar { height: 1; background: $boost; }
#server-line { width: 1fr; }
#status { width: auto; padding: 0 1; }
.pane-title { text-style: bold; color: $accent; }
#chat-pane { height: 1fr; }
#transcript { height: 1fr; border: round $primary; }
#input-pane { height: auto; }
#keybind-bar { height: 1; color: $text-muted; }
"""


class McpTerminalApp(App):
    TITLE = "mcpterm"
    CSS = APP_CSS
    BINDINGS = binding_list() + [
        Binding("pageup", "scroll_up", "ScrollUp", priority=True),
        Binding("pagedown", "scroll_down", "ScrollDown", priority=True),
    ]

    def __init__(self, config: AppConfig | None = None, *, controller: ConnectionController | None = None) -> None:
        super().__init__()
        self.cfg = config or app_config(load_config())
        if controller is None:
            controller = ConnectionController.from_url(
                self.cfg.server_url,
                client_name=self.cfg.client_name,
                client_version=self.cfg.client_version,
                call_timeout=self.cfg.call_timeout,
                connect_timeout=self.cfg.connect_timeout,
            )
        controller.on_state_change = self._on_state_change
        self.controller = controller
        self.log_state = SessionLog()
        self.session = TerminalSession(controller, self.log_state)
        self._unsubscribe = self.log_state.subscribe(self._on_log_change)
        self.connect_task: asyncio.Task[bool] | None = None
        self.tools_task: asyncio.Task[None] | None = None
        self.status_text = ""
        self._ui_ready = False

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical(id="app"):
            with Horizontal(id="status-bar"):
                yield Static("", id="server-line")
                yield Static("", id="status")
            with Vertical(id="chat-pane"):
                yield Static("Transcript", classes="pane-title")
                yield Log(id="transcript", auto_scroll=True)
            with Vertical(id="input-pane"):
                yield Static("Command", classes="pane-title")
                yield Input(placeholder="@echo hello  |  @add 2 3", id="prompt")
        yield Static(render_keybinds(), id="keybind-bar")

    async def on_mount(self) -> None:
        self._ui_ready = True
        self.set_focus(self.query_one("#prompt", Input))
        self.update_status()
        self.connect_task = asyncio.create_task(self.session.connect())

    async def on_unmount(self) -> None:
        self._ui_ready = False
        self._unsubscribe()
        for task in (self.connect_task, self.tools_task):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        await self.session.close()

    def update_status(self) -> None:
        state = self.controller.state
        target = getattr(self.controller.transport, "stream_url", None) or "local"
        self.query_one("#server-line", Static).update(f"server={target}")
        self.status_text = f"state={state.value} | pending={self.controller.pending_count}"
        self.query_one("#status", Static).update(self.status_text)

    def _on_state_change(self, state: ConnectionState, error: BaseException | None) -> None:
        if not self._ui_ready:
            return
        self.update_status()
        if state is ConnectionState.FAILED and error is not None:
            self.notify(f"Connection failed: {error}", severity="error")

    def _on_log_change(self, entry: LogEntry) -> None:
        if not self._ui_ready:
            return
        # Processing entries are replaced in place, so redraw the whole log.
        self._render_log()
        self.update_status()

    def _render_log(self) -> None:
        log = self.query_one("#transcript", Log)
        log.clear()
        for entry in self.log_state.entries():
            self._write_transcript(entry)

    def _write_transcript(self, entry: LogEntry) -> None:
        log = self.query_one("#transcript", Log)
        raw_lines = (entry.text or "").splitlines() or [""]
        prefix = f"{entry.sender.label}:"
        if entry.tool and entry.sender is not Sender.USER:
            prefix = f"{entry.sender.label} [{entry.tool}]:"
        pad = " " * (len(prefix) + 1)
        width = max(log.size.width - len(prefix) - 1, 20)
        first = True
        for raw in raw_lines:
            wrapped = textwrap.wrap(raw, width=width) or [""]
            for segment in wrapped:
                if first:
                    log.write_line(f"{prefix} {segment}".rstrip())
                    first = False
                else:
                    log.write_line(f"{pad}{segment}".rstrip())

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        event.input.value = ""
        if not text:
            return
        self.session.spawn(text)

    async def action_scroll_up(self) -> None:
        log = self.query_one("#transcript", Log)
        log.auto_scroll = False
        log.scroll_page_up()

    async def action_scroll_down(self) -> None:
        log = self.query_one("#transcript", Log)
        log.scroll_page_down()
        if log.is_vertical_scroll_end:
            log.auto_scroll = True

    async def action_cancel(self) -> None:
        cancelled = await self.session.cancel_all()
        if cancelled:
            self.notify(f"Cancelled {cancelled} invocation(s)")

    async def action_reconnect(self) -> None:
        if self.controller.connected:
            self.notify("Already connected")
            return
        if self.connect_task is not None and not self.connect_task.done():
            return
        self.connect_task = asyncio.create_task(self.session.connect())

    async def action_list_tools(self) -> None:
        if self.tools_task is not None and not self.tools_task.done():
            return
        self.tools_task = asyncio.create_task(self._list_tools())

    async def _list_tools(self) -> None:
        try:
            tools = await self.controller.list_tools()
        except MCPTermError as exc:
            self.notify(str(exc), severity="error")
            return
        names = ", ".join(str(tool.get("name")) for tool in tools) or "none"
        self.log_state.append(Sender.SYSTEM, f"Tools: {names}")

    async def action_clear_log(self) -> None:
        self.log_state.clear()
        self._render_log()

    async def action_help(self) -> None:
        self.notify(render_keybinds())


def main(config: AppConfig | None = None) -> None:
    McpTerminalApp(config).run()


if __name__ == "__main__":
    main()
