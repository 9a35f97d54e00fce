"""App-level tests: command palette providers and the mounted console."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import FakeStore, SessionFactory
from redisui.app import RedisUiApp
from redisui.commands import format_result
from redisui.config import AppConfig, ConnectionProfileConfig
from redisui.connections import ConnectionRegistry, HandleState
from redisui.models import ZSetMember
from redisui.providers import ConnectionSwitchProvider, SessionRefreshProvider
from redisui.session import SessionManager, SessionState
from redisui.widgets import CommandPad, KeyBrowser
from redisui.widgets.key_browser import render_value
from redisui.widgets.status_bar import describe_state


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _DummyScreen:
    """Minimal stub so providers can reference an app without a running screen stack."""

    def __init__(self, app: RedisUiApp) -> None:
        self.app = app
        self.focused = None


def _app(factory: SessionFactory) -> RedisUiApp:
    config = AppConfig().with_connection(ConnectionProfileConfig(id="replica", name="Analytics Replica", port=6380))
    manager = SessionManager(
        config=config,
        registry=ConnectionRegistry(factory),
        environ={},
        persist=False,
    )
    return RedisUiApp(manager)


@pytest.mark.anyio
async def test_connection_switch_provider_connects(session_factory: SessionFactory) -> None:
    app = _app(session_factory)
    try:
        provider = ConnectionSwitchProvider(_DummyScreen(app))
        hits = [hit async for hit in provider.discover()]
        target = next(hit for hit in hits if "Analytics Replica" in (hit.display or ""))

        await target.command()

        assert app.session_manager.active_connection_id == "replica"
        assert app.session_manager.config.active_connection == "replica"
    finally:
        await app.session_manager.shutdown()


@pytest.mark.anyio
async def test_connection_switch_provider_search_matches_names(session_factory: SessionFactory) -> None:
    app = _app(session_factory)

    provider = ConnectionSwitchProvider(_DummyScreen(app))
    hits = [hit async for hit in provider.search("replica")]

    assert len(hits) == 1


@pytest.mark.anyio
async def test_session_refresh_provider_polls_server_info(session_factory: SessionFactory) -> None:
    app = _app(session_factory)
    try:
        await app.switch_connection("local")
        provider = SessionRefreshProvider(_DummyScreen(app))
        hits = [hit async for hit in provider.discover()]
        assert hits

        await hits[0].command()

        state = app.session_manager.state
        assert state is not None
        assert state.snapshot is not None
        assert state.snapshot.server.version == "7.2.4"
    finally:
        await app.session_manager.shutdown()


@pytest.mark.anyio
async def test_failed_switch_is_queued_as_notification(store: FakeStore) -> None:
    app = _app(SessionFactory(store, fail_open=True))

    assert await app.switch_connection("local") is False
    assert app._pending_notifications


@pytest.mark.anyio
async def test_mounted_console_lists_keys_and_runs_commands(session_factory: SessionFactory, store: FakeStore) -> None:
    store.data["greeting"] = ("string", "hi")
    app = _app(session_factory)

    async with app.run_test() as pilot:
        assert await app.switch_connection("local")
        await pilot.pause()

        browser = app.query_one(KeyBrowser)
        assert [entry.key for entry in browser.descriptors] == ["greeting"]

        pad = app.query_one(CommandPad)
        await pad.run_line("GET greeting")
        assert pad.history == ("GET greeting",)

    assert all(session.state is HandleState.CLOSED for session in session_factory.sessions)


def test_describe_state_includes_snapshot_and_error() -> None:
    manager = SessionManager(config=AppConfig(), environ={}, persist=False)
    connection = manager.connection("local")
    state = SessionState(
        connection=connection,
        handle_state=HandleState.ERROR,
        refreshed_at=datetime.now(tz=timezone.utc),
        status="Degraded",
        last_error="Connection refused\nmore detail",
    )

    text = describe_state(state)

    assert "Connection: Local Redis" in text
    assert "Status: Degraded (error)" in text
    assert "Error: Connection refused" in text
    assert "more detail" not in text


def test_render_value_formats_collections() -> None:
    assert render_value(None) == "(nil)"
    assert render_value("plain") == "plain"
    assert render_value({"b", "a"}) == '[\n  "a",\n  "b"\n]'
    assert render_value([ZSetMember("a", 1.5)]) == "1.5  a"
    assert format_result(["x"]) == '1) "x"'


@pytest.mark.anyio
async def test_connection_switch_provider_matches_host_and_port(session_factory: SessionFactory) -> None:
    app = _app(session_factory)

    provider = ConnectionSwitchProvider(_DummyScreen(app))
    hits = [hit async for hit in provider.search("6380")]

    assert [hit.text for hit in hits] == ["Connect: Analytics Replica (localhost:6380)"]


@pytest.mark.anyio
async def test_connection_switch_provider_help_reflects_source_and_activity(session_factory: SessionFactory) -> None:
    manager = SessionManager(
        config=AppConfig(),
        registry=ConnectionRegistry(session_factory),
        environ={"REDIS_URL": "redis://:pw@cache:6380"},
        persist=False,
    )
    app = RedisUiApp(manager)
    try:
        await manager.connect("local")
        provider = ConnectionSwitchProvider(_DummyScreen(app))
        help_by_id = {hit.text: hit.help async for hit in provider.discover()}

        assert help_by_id["Connect: Local Redis (localhost:6379)"].startswith("Active session")
        assert "environment" in help_by_id["Connect: Environment (cache:6380)"]
    finally:
        await manager.shutdown()


@pytest.mark.anyio
async def test_session_refresh_provider_is_empty_without_a_session(session_factory: SessionFactory) -> None:
    app = _app(session_factory)

    provider = SessionRefreshProvider(_DummyScreen(app))

    assert [hit async for hit in provider.discover()] == []


@pytest.mark.anyio
async def test_session_refresh_provider_offers_disconnect(session_factory: SessionFactory) -> None:
    app = _app(session_factory)
    try:
        await app.switch_connection("local")
        provider = SessionRefreshProvider(_DummyScreen(app))
        (hit,) = [hit async for hit in provider.search("disconnect")]

        await hit.command()

        assert "local" not in app.session_manager.registry
        assert app.session_manager.state is not None
        assert app.session_manager.state.status == "Disconnected"
    finally:
        await app.session_manager.shutdown()
