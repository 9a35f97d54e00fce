"""Textual application entry point for redisui."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Header

from .config import CONFIG_FILE, AppConfig, load_config
from .errors import RedisUiError
from .providers import ConnectionSwitchProvider, SessionRefreshProvider
from .session import SessionManager, SessionState
from .widgets import CommandPad, KeyBrowser, NavigationSidebar, StatusBar

LOG = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _load_app_config() -> AppConfig:
    """Load configuration with a small wrapper for future overrides."""

    return load_config()


def configure_logging(config: AppConfig) -> None:
    """Route library logging (and captured warnings) to a file.

    The terminal belongs to Textual, so nothing is written to stderr.
    """

    path = Path(config.log_file).expanduser() if config.log_file else CONFIG_FILE.parent / "redisui.log"
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(config.log_level.upper())
    logging.captureWarnings(True)


class RedisUiApp(App[None]):
    """Console for browsing keys and running commands against Redis."""

    COMMANDS = App.COMMANDS | {ConnectionSwitchProvider, SessionRefreshProvider}
    CSS = """
    Screen {
        layout: vertical;
    }
    #content {
        layout: horizontal;
        height: 1fr;
    }
    #main-column {
        layout: vertical;
        padding: 0 1;
        height: 1fr;
    }
    KeyBrowser {
        height: 2fr;
    }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Quit"),
        ("ctrl+r", "refresh", "Refresh"),
        ("ctrl+l", "reload_keys", "Reload Keys"),
        ("ctrl+p", "command_palette", "Command Palette"),
    ]

    def __init__(self, session_manager: SessionManager | None = None) -> None:
        super().__init__()
        if session_manager is None:
            session_manager = SessionManager(config=_load_app_config())
        self._session_manager = session_manager
        self._session_unsubscribe: Callable[[], None] | None = None
        self._last_session_state: SessionState | None = None
        self._pending_notifications: list[tuple[str, str]] = []
        self._key_browser: KeyBrowser | None = None
        self._install_session_listener()

    def compose(self) -> ComposeResult:
        """Compose the root layout."""

        yield Header(show_clock=True)
        sidebar = NavigationSidebar(self._session_manager)
        width = self._session_manager.config.layout.sidebar_width
        if width:
            sidebar.styles.width = width
        self._key_browser = KeyBrowser(self._session_manager)
        main_column = Vertical(self._key_browser, CommandPad(self._session_manager), id="main-column")
        yield Horizontal(sidebar, main_column, id="content")
        yield StatusBar(self._session_manager)
        yield Footer()

    async def on_mount(self) -> None:
        self._flush_pending_notifications()
        active = self._session_manager.config.active_connection
        if active and any(config.id == active for config in self._session_manager.connections):
            self.run_worker(self.switch_connection(active), group="connect", exclusive=True)

    @property
    def session_manager(self) -> SessionManager:
        """Expose the session manager for tests."""

        return self._session_manager

    async def action_refresh(self) -> None:
        await self._session_manager.refresh_active()

    async def action_reload_keys(self) -> None:
        if self._key_browser is not None:
            await self._key_browser.reload()

    async def switch_connection(self, connection_id: str) -> bool:
        """Connect to ``connection_id`` and make it the active session."""

        try:
            result = await self._session_manager.connect(connection_id)
        except RedisUiError as exc:
            self._safe_notify(exc.message, severity="error")
            return False
        config = self._session_manager.connection(result.id)
        self._safe_notify(f"Connected to {config.label}", severity="information")
        await self._session_manager.refresh_active()
        if self._key_browser is not None and self.is_running:
            await self._key_browser.reload()
        return True

    async def on_navigation_sidebar_connection_selected(self, message: NavigationSidebar.ConnectionSelected) -> None:
        self.run_worker(self.switch_connection(message.connection_id), group="connect", exclusive=True)

    async def _shutdown(self) -> None:
        if self._session_unsubscribe:
            self._session_unsubscribe()
            self._session_unsubscribe = None
        await self._session_manager.shutdown()
        await super()._shutdown()

    def _install_session_listener(self) -> None:
        if self._session_unsubscribe:
            self._session_unsubscribe()
        self._session_unsubscribe = self._session_manager.subscribe(self._handle_session_state)

    def _handle_session_state(self, state: SessionState) -> None:
        previous = self._last_session_state
        same_connection = previous is not None and previous.connection.id == state.connection.id
        if state.last_error and not (same_connection and previous.last_error):
            reason = state.last_error.splitlines()[0][:120]
            self._safe_notify(f"{state.connection.name}: {state.status} ({reason})", severity="warning")
        elif same_connection and previous.last_error and not state.last_error:
            self._safe_notify(f"{state.connection.name}: {state.status}", severity="information")
        self._last_session_state = state

    def _safe_notify(self, message: str, *, severity: str = "information") -> None:
        if self.is_running:
            try:
                self.notify(message, severity=severity)
            except Exception:
                LOG.exception("Failed to display notification", extra={"notice": message})
        else:
            self._pending_notifications.append((message, severity))

    def _flush_pending_notifications(self) -> None:
        if not self._pending_notifications:
            return
        pending = list(self._pending_notifications)
        self._pending_notifications.clear()
        for message, severity in pending:
            try:
                self.notify(message, severity=severity)
            except Exception:
                LOG.exception("Failed to display queued notification", extra={"notice": message})


def main() -> None:
    """Invoke the Textual application."""

    configure_logging(_load_app_config())
    RedisUiApp().run()


if __name__ == "__main__":
    main()
