"""Command palette providers: connection switching and active-session actions."""

from __future__ import annotations

from typing import Iterator, NamedTuple

from textual.command import DiscoveryHit, Hit, Hits, Provider
from textual.types import IgnoreReturnCallbackType

from .models import ConnectionConfig
from .session import SessionManager


class PaletteEntry(NamedTuple):
    title: str
    help: str
    command: IgnoreReturnCallbackType


class _SessionCommands(Provider):
    """Shared search/discover over the entries a subclass derives from the session."""

    async def search(self, query: str) -> Hits:
        manager = self._session_manager
        if manager is None:
            return
        matcher = self.matcher(query)
        for entry in self.entries(manager):
            score = matcher.match(entry.title)
            if score > 0:
                yield Hit(score, matcher.highlight(entry.title), entry.command, text=entry.title, help=entry.help)

    async def discover(self) -> Hits:
        manager = self._session_manager
        if manager is None:
            return
        for entry in self.entries(manager):
            yield DiscoveryHit(entry.title, entry.command, text=entry.title, help=entry.help)

    def entries(self, manager: SessionManager) -> Iterator[PaletteEntry]:
        raise NotImplementedError

    @property
    def _session_manager(self) -> SessionManager | None:
        manager = getattr(self.app, "session_manager", None)
        return manager if isinstance(manager, SessionManager) else None


class ConnectionSwitchProvider(_SessionCommands):
    """One entry per catalog connection, searchable by name or host:port."""

    def entries(self, manager: SessionManager) -> Iterator[PaletteEntry]:
        state = manager.state
        active = state.connection.id if state is not None and state.connected else None
        for connection in manager.connections:
            yield PaletteEntry(
                title=f"Connect: {connection.label}",
                help=_connection_help(connection, active=connection.id == active),
                command=self._switch_to(connection.id),
            )

    def _switch_to(self, connection_id: str) -> IgnoreReturnCallbackType:
        async def _switch() -> None:
            switch = getattr(self.app, "switch_connection", None)
            if switch is not None:
                await switch(connection_id)

        return _switch


class SessionRefreshProvider(_SessionCommands):
    """Actions on the active session; nothing is offered until one exists."""

    def entries(self, manager: SessionManager) -> Iterator[PaletteEntry]:
        state = manager.state
        if state is None:
            return
        name = state.connection.name
        yield PaletteEntry("Refresh server info", f"Re-run INFO against {name} (ctrl+r).", manager.refresh_active)
        if state.connected:
            yield PaletteEntry(
                f"Disconnect from {name}",
                "Quit the session; the connection stays saved.",
                self._disconnect(state.connection.id),
            )

    def _disconnect(self, connection_id: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            manager = self._session_manager
            if manager is not None:
                await manager.disconnect(connection_id)

        return _run


def _connection_help(connection: ConnectionConfig, *, active: bool) -> str:
    if active:
        return "Active session. Selecting it again re-checks the server."
    if connection.is_environment:
        return "Read from the environment; the password is not shown."
    return "Saved in config.toml."


__all__ = ["ConnectionSwitchProvider", "PaletteEntry", "SessionRefreshProvider"]
