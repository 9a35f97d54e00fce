"""Key browser: pattern search, key table and value preview."""

from __future__ import annotations

import json
from typing import Any

from textual.app import ComposeResult
from textual.containers import Container
from textual.widgets import DataTable, Input, Static

from redisui.errors import RedisUiError
from redisui.models import KeyDescriptor, ZSetMember
from redisui.session import SessionManager


class KeyBrowser(Container):
    """Lists keys of the active connection and previews the selected value."""

    DEFAULT_CSS = """
    KeyBrowser {
        layout: vertical;
        border: round $primary 40%;
        padding: 0 1;
        height: 1fr;
    }

    #key-table {
        height: 1fr;
    }

    #key-preview {
        height: 8;
        border-top: solid $surface-darken-2;
        color: $text-muted;
    }
    """

    def __init__(self, session_manager: SessionManager, *, row_limit: int = 500) -> None:
        super().__init__(id="key-browser")
        self._session_manager = session_manager
        self._row_limit = row_limit
        self._descriptors: list[KeyDescriptor] = []

    def compose(self) -> ComposeResult:
        yield Input(placeholder="Key pattern (default *)", id="key-pattern")
        yield DataTable(id="key-table", zebra_stripes=True, cursor_type="row")
        yield Static("Select a key to preview its value.", id="key-preview")

    async def on_mount(self) -> None:
        table = self.query_one("#key-table", DataTable)
        table.add_columns("Key", "Type", "TTL", "Size")

    @property
    def descriptors(self) -> tuple[KeyDescriptor, ...]:
        return tuple(self._descriptors)

    async def reload(self) -> None:
        connection_id = self._session_manager.active_connection_id
        table = self.query_one("#key-table", DataTable)
        table.clear()
        self._descriptors = []
        if connection_id is None:
            return
        pattern = self.query_one("#key-pattern", Input).value.strip() or "*"
        try:
            descriptors = await self._session_manager.list_keys(connection_id, pattern)
        except RedisUiError as exc:
            self._preview(f"Error: {exc.message}")
            return
        self._descriptors = descriptors[: self._row_limit]
        for descriptor in self._descriptors:
            type_label = descriptor.type.value if descriptor.type is not None else (descriptor.raw_type or "?")
            ttl = "∞" if descriptor.ttl_seconds == -1 else str(descriptor.ttl_seconds)
            table.add_row(descriptor.key, type_label, ttl, descriptor.size_label, key=descriptor.key)

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "key-pattern":
            return
        event.stop()
        await self.reload()

    async def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        key = event.row_key.value
        connection_id = self._session_manager.active_connection_id
        descriptor = next((entry for entry in self._descriptors if entry.key == key), None)
        if connection_id is None or descriptor is None:
            return
        if descriptor.type is None:
            self._preview(descriptor.error or "Unsupported type.")
            return
        try:
            value = await self._session_manager.get_key(connection_id, descriptor.key, descriptor.type)
        except RedisUiError as exc:
            self._preview(f"Error: {exc.message}")
            return
        self._preview(render_value(value))

    def _preview(self, text: str) -> None:
        self.query_one("#key-preview", Static).update(text)


def render_value(value: Any) -> str:
    if isinstance(value, str) or value is None:
        return "(nil)" if value is None else value
    if isinstance(value, (set, frozenset)):
        value = sorted(value)
    if isinstance(value, list) and value and isinstance(value[0], ZSetMember):
        return "\n".join(f"{entry.score:g}  {entry.member}" for entry in value)
    return json.dumps(value, indent=2, default=str)


__all__ = ["KeyBrowser", "render_value"]
