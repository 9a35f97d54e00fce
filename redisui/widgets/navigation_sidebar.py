"""Sidebar widget listing connections and the active session."""

from __future__ import annotations

from typing import Callable

from textual import on
from textual.app import ComposeResult
from textual.containers import Container
from textual.message import Message
from textual.widgets import Label, ListItem, ListView, Static

from redisui.models import ConnectionConfig
from redisui.session import SessionManager, SessionState


class NavigationSidebar(Container):
    """Displays known connections; selecting one asks the app to connect."""

    DEFAULT_CSS = """
    NavigationSidebar {
        width: 30;
        min-width: 22;
        border-right: solid $surface-darken-1;
        padding: 1;
        height: 1fr;
        background: $surface-darken-2;
    }

    NavigationSidebar .sidebar-heading {
        text-style: bold;
        margin-bottom: 1;
    }

    #connection-list {
        height: 10;
        border: round $primary 30%;
        margin-bottom: 2;
    }

    #connection-list .active {
        text-style: bold;
    }

    #connection-summary {
        padding-top: 1;
        border-top: solid $surface-darken-1;
        color: $text-muted;
        min-height: 4;
    }
    """

    class ConnectionSelected(Message):
        """Posted when the operator picks a connection."""

        def __init__(self, connection_id: str) -> None:
            super().__init__()
            self.connection_id = connection_id

    def __init__(self, session_manager: SessionManager) -> None:
        super().__init__(id="nav-sidebar")
        self._session_manager = session_manager
        self._connection_list: ListView | None = None
        self._items: dict[str, _ConnectionListItem] = {}
        self._summary: Static | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Static("Connections", classes="sidebar-heading")
        items = [_ConnectionListItem(config) for config in self._session_manager.connections]
        self._items = {item.connection_id: item for item in items}
        self._connection_list = ListView(*items, id="connection-list")
        yield self._connection_list
        self._summary = Static("No active connection.", id="connection-summary")
        yield self._summary

    async def on_mount(self) -> None:
        self._unsubscribe = self._session_manager.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_session_update(self, state: SessionState) -> None:
        for connection_id, item in self._items.items():
            item.set_class(connection_id == state.connection.id, "active")
        if self._summary is None:
            return
        config = state.connection
        lines = [
            config.name,
            f"{config.host}:{config.port}{' (tls)' if config.tls else ''}",
            f"Source: {config.source.value}",
            f"State: {state.handle_state.value}",
        ]
        self._summary.update("\n".join(lines))

    @on(ListView.Selected, "#connection-list")
    def _handle_selected(self, event: ListView.Selected) -> None:
        item = event.item
        if isinstance(item, _ConnectionListItem):
            self.post_message(self.ConnectionSelected(item.connection_id))


class _ConnectionListItem(ListItem):
    def __init__(self, config: ConnectionConfig) -> None:
        tag = " (env)" if config.is_environment else ""
        super().__init__(Label(f"{config.name}{tag}"))
        self.connection_id = config.id


__all__ = ["NavigationSidebar"]
