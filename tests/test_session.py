"""Tests for the session manager."""

from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import FakeStore, SessionFactory, make_config
from redisui.config import AppConfig, ConnectionProfileConfig
from redisui.connections import ConnectionRegistry, HandleState
from redisui.errors import ConfigError, NotFoundError, UpstreamError
from redisui.models import KeyType
from redisui.session import SessionManager, SessionState


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _manager(factory: SessionFactory, *, environ: dict[str, str] | None = None, config: AppConfig | None = None) -> SessionManager:
    return SessionManager(
        config=config or AppConfig(),
        registry=ConnectionRegistry(factory),
        environ=environ or {},
        persist=False,
    )


def test_environment_connections_take_precedence_by_endpoint(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory, environ={"REDIS_URL": "redis://LOCALHOST:6379"})

    ids = [config.id for config in manager.connections]

    assert ids == ["env-default"]


def test_user_connections_on_other_endpoints_are_listed(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory, environ={"REDIS_URL": "redis://cache:6380"})

    assert [config.id for config in manager.connections] == ["env-default", "local"]
    assert manager.connection("env-default").is_environment


def test_environment_connections_are_read_only(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory, environ={"REDIS_URL": "redis://cache:6380"})

    with pytest.raises(ConfigError):
        manager.add_connection(ConnectionProfileConfig(id="env-default", name="Clash"))


@pytest.mark.anyio
async def test_environment_connections_cannot_be_removed(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory, environ={"REDIS_URL": "redis://cache:6380"})

    with pytest.raises(ConfigError):
        await manager.remove_connection("env-default")


@pytest.mark.anyio
async def test_connect_publishes_state(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory)
    states: list[SessionState] = []
    manager.subscribe(states.append)

    result = await manager.connect("local")

    assert result.id == "local"
    assert result.is_environment is False
    assert manager.active_connection_id == "local"
    assert states[-1].handle_state is HandleState.READY
    assert states[-1].connected
    assert manager.config.active_connection == "local"


@pytest.mark.anyio
async def test_connect_failure_reports_error_state(store: FakeStore) -> None:
    manager = _manager(SessionFactory(store, fail_open=True))

    with pytest.raises(UpstreamError):
        await manager.connect("local")

    assert manager.state is not None
    assert manager.state.handle_state is HandleState.ERROR
    assert manager.state.last_error
    assert "local" not in manager.registry


@pytest.mark.anyio
async def test_connect_accepts_adhoc_config(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory)

    result = await manager.connect(make_config("adhoc", port=6390))

    assert result.id == "adhoc"
    assert manager.connection("adhoc").port == 6390
    assert manager.config.active_connection is None


@pytest.mark.anyio
async def test_key_operations_route_through_registry(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory)
    await manager.connect("local")

    await manager.set_key("local", "user:1", {"name": "Ada"}, "hash")
    listed = await manager.list_keys("local", "user:*")
    value = await manager.get_key("local", "user:1")
    await manager.delete_key("local", "user:1")

    assert [entry.key for entry in listed] == ["user:1"]
    assert listed[0].type is KeyType.HASH
    assert value == {"name": "Ada"}
    assert await manager.list_keys("local") == []


@pytest.mark.anyio
async def test_operations_on_unknown_connection_are_not_found(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory)

    with pytest.raises(NotFoundError, match="not found"):
        await manager.get_key("local", "k")


@pytest.mark.anyio
async def test_server_info_updates_state(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory)
    await manager.connect("local")

    snapshot = await manager.server_info("local")

    assert snapshot.server.version == "7.2.4"
    assert manager.state is not None
    assert manager.state.snapshot is snapshot


@pytest.mark.anyio
async def test_refresh_active_marks_degraded_after_session_end(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory)
    await manager.connect("local")

    session_factory.sessions[0].end()
    snapshot = await manager.refresh_active()

    assert snapshot is None
    assert manager.state is not None
    assert manager.state.status == "Degraded"
    assert manager.state.handle_state is HandleState.CLOSED


@pytest.mark.anyio
async def test_disconnect_and_shutdown_release_sessions(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory, config=AppConfig().with_connection(ConnectionProfileConfig(id="b", name="B", port=6380)))
    await manager.connect("local")
    await manager.connect("b")

    await manager.disconnect("local")
    assert "local" not in manager.registry

    await manager.shutdown()
    assert len(manager.registry) == 0
    assert all(session.state is HandleState.CLOSED for session in session_factory.sessions)


@pytest.mark.anyio
async def test_update_connection_drops_live_session(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory)
    await manager.connect("local")

    updated = await manager.update_connection(ConnectionProfileConfig(id="local", name="Local", port=6390))

    assert updated.port == 6390
    assert "local" not in manager.registry
    assert manager.state is None


def test_injected_empty_registry_is_kept(session_factory: SessionFactory) -> None:
    registry = ConnectionRegistry(session_factory)

    manager = SessionManager(config=AppConfig(), registry=registry, environ={}, persist=False)

    assert len(registry) == 0
    assert manager.registry is registry


@pytest.mark.anyio
async def test_connect_to_environment_config_uses_catalog_copy(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory, environ={"REDIS_URL": "redis://:pw@cache:6380"})
    listed = manager.connection("env-default")
    stripped = replace(listed, password=None)

    result = await manager.connect(stripped, is_environment=True)

    assert result.is_environment
    assert session_factory.sessions[-1].config is listed


@pytest.mark.anyio
async def test_user_config_with_environment_id_is_rejected(session_factory: SessionFactory) -> None:
    manager = _manager(session_factory, environ={"REDIS_URL": "redis://cache:6380"})

    with pytest.raises(ConfigError):
        await manager.connect(make_config("env-default", host="elsewhere", port=1))

    assert "env-default" not in manager.registry
    assert session_factory.sessions == []
