"""Terminal-style pad for ad-hoc commands."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import Container
from textual.widgets import Input, RichLog, Static

from redisui.commands import format_result
from redisui.errors import RedisUiError
from redisui.session import SessionManager


class CommandPad(Container):
    """Runs commands against the active connection and echoes replies."""

    DEFAULT_CSS = """
    CommandPad {
        layout: vertical;
        border: round $primary 40%;
        padding: 0 1;
        height: 1fr;
    }

    CommandPad .panel-title {
        text-style: bold;
    }

    #command-output {
        height: 1fr;
        border-top: solid $surface-darken-2;
    }
    """

    def __init__(self, session_manager: SessionManager) -> None:
        super().__init__(id="command-pad")
        self._session_manager = session_manager
        self._history: list[str] = []

    def compose(self) -> ComposeResult:
        yield Static("Command", classes="panel-title")
        yield Input(placeholder="e.g. GET user:1000", id="command-input")
        yield RichLog(id="command-output", wrap=True, markup=False)

    @property
    def history(self) -> tuple[str, ...]:
        return tuple(self._history)

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "command-input":
            return
        event.stop()
        line = event.value.strip()
        event.input.value = ""
        await self.run_line(line)

    async def run_line(self, line: str) -> None:
        output = self.query_one("#command-output", RichLog)
        connection_id = self._session_manager.active_connection_id
        if connection_id is None:
            output.write("(error) Not connected.")
            return
        if line:
            self._history.append(line)
        output.write(f"> {line}")
        try:
            result = await self._session_manager.run_command(connection_id, line)
        except RedisUiError as exc:
            output.write(f"(error) {exc.message}")
            return
        output.write(format_result(result.result))
        output.write(f"({result.elapsed_ms} ms)")


__all__ = ["CommandPad"]
