"""Connection/session manager wiring the registry into the console."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Mapping

from . import codec, commands, info, keys
from .commands import CommandResult
from .config import AppConfig, ConnectionProfileConfig, environment_connections, save_config
from .connections import ConnectionHandle, ConnectionRegistry, HandleState, RedisClientSession
from .errors import ConfigError, NotFoundError, RedisUiError, UpstreamError
from .info import ServerSnapshot
from .models import ConnectionConfig, KeyDescriptor, KeyType

LOG = logging.getLogger(__name__)

SessionListener = Callable[["SessionState"], None]


@dataclass(frozen=True, slots=True)
class ConnectResult:
    """Acknowledgement returned once a connection answered PING."""

    id: str
    is_environment: bool


@dataclass(frozen=True, slots=True)
class SessionState:
    """Current session snapshot (active connection + latest server info)."""

    connection: ConnectionConfig
    handle_state: HandleState
    refreshed_at: datetime
    snapshot: ServerSnapshot | None = None
    status: str = "Connected"
    last_error: str | None = None

    @property
    def connected(self) -> bool:
        return self.handle_state is HandleState.READY


class SessionManager:
    """Service object owning the connection catalog and the registry.

    Built once at start-up and torn down with :meth:`shutdown`.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        registry: ConnectionRegistry | None = None,
        environ: Mapping[str, str] | None = None,
        persist: bool = True,
    ) -> None:
        self._config = config
        self._registry = registry if registry is not None else ConnectionRegistry(self._default_session_factory)
        self._environment = environment_connections(environ)
        self._persist = persist
        self._listeners: set[SessionListener] = set()
        self._state: SessionState | None = None
        self._adhoc: dict[str, ConnectionConfig] = {}

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def state(self) -> SessionState | None:
        """Current session state."""

        return self._state

    @property
    def active_connection_id(self) -> str | None:
        if self._state:
            return self._state.connection.id
        return None

    @property
    def connections(self) -> tuple[ConnectionConfig, ...]:
        """Environment connections first, then user connections that do not collide."""

        taken = {config.endpoint for config in self._environment}
        env_ids = {config.id for config in self._environment}
        user: list[ConnectionConfig] = []
        for profile in self._config.connections:
            config = self._user_config(profile)
            if config is None or config.endpoint in taken or config.id in env_ids:
                continue
            user.append(config)
        return self._environment + tuple(user)

    def environment_connections(self) -> tuple[ConnectionConfig, ...]:
        return self._environment

    def connection(self, connection_id: str) -> ConnectionConfig:
        for config in self.connections:
            if config.id == connection_id:
                return config
        adhoc = self._adhoc.get(connection_id)
        if adhoc is not None:
            return adhoc
        raise NotFoundError(f"Connection '{connection_id}' not found.")

    def add_connection(self, profile: ConnectionProfileConfig) -> ConnectionConfig:
        """Register a user connection and persist it."""

        config = profile.to_connection()
        if any(existing.id == config.id for existing in self._environment):
            raise ConfigError(f"Connection id '{config.id}' is reserved by an environment connection.")
        if any(existing.id == config.id for existing in self._config.connections):
            raise ConfigError(f"Connection '{config.id}' already exists.")
        self._config = self._config.with_connection(profile)
        self._save()
        return config

    async def update_connection(self, profile: ConnectionProfileConfig) -> ConnectionConfig:
        """Replace a user connection; its live session is dropped."""

        self._ensure_mutable(profile.id)
        if not any(existing.id == profile.id for existing in self._config.connections):
            raise NotFoundError(f"Connection '{profile.id}' not found.")
        config = profile.to_connection()
        await self._drop_session(profile.id)
        self._config = self._config.with_connection(profile)
        self._save()
        return config

    async def remove_connection(self, connection_id: str) -> None:
        self._ensure_mutable(connection_id)
        if not any(existing.id == connection_id for existing in self._config.connections):
            raise NotFoundError(f"Connection '{connection_id}' not found.")
        await self._drop_session(connection_id)
        self._config = self._config.without_connection(connection_id)
        self._save()

    async def connect(self, target: ConnectionConfig | str, *, is_environment: bool = False) -> ConnectResult:
        """Acquire a session for ``target`` and PING it before reporting success."""

        config = self.connection(target) if isinstance(target, str) else self._resolve(target)
        if isinstance(target, ConnectionConfig) and not self._is_known(config.id):
            self._adhoc[config.id] = config
        LOG.info(
            "Connecting",
            extra={"connection": config.id, "name": config.name, "environment": is_environment or config.is_environment},
        )
        try:
            handle = await self._registry.acquire(config)
            await handle.call("PING")
        except RedisUiError as exc:
            await self._registry.release(config.id)
            self._set_state(config, HandleState.ERROR, status="Connection failed", last_error=exc.message)
            if isinstance(exc, UpstreamError):
                raise
            raise UpstreamError(exc.message) from exc
        self._set_state(config, handle.state, status="Connected")
        if self._config.active_connection != config.id and self._is_known(config.id, include_adhoc=False):
            self._config = self._config.with_active_connection(config.id)
            self._save()
        return ConnectResult(id=config.id, is_environment=is_environment or config.is_environment)

    async def disconnect(self, connection_id: str) -> None:
        await self._registry.release(connection_id)
        if self._state and self._state.connection.id == connection_id:
            self._set_state(self._state.connection, HandleState.CLOSED, status="Disconnected")

    async def list_keys(self, connection_id: str, pattern: str = "*") -> list[KeyDescriptor]:
        return await keys.list_keys(self._handle(connection_id), pattern or "*")

    async def get_key(self, connection_id: str, key: str, key_type: KeyType | str | None = None) -> Any:
        return await codec.read_value(self._handle(connection_id), key, key_type)

    async def set_key(self, connection_id: str, key: str, value: Any, key_type: KeyType | str) -> bool:
        return await codec.write_value(self._handle(connection_id), key, value, key_type)

    async def delete_key(self, connection_id: str, key: str) -> bool:
        return await codec.delete_value(self._handle(connection_id), key)

    async def run_command(self, connection_id: str, command_line: str) -> CommandResult:
        return await commands.run_command(self._handle(connection_id), command_line)

    async def server_info(self, connection_id: str) -> ServerSnapshot:
        snapshot = await info.fetch_snapshot(self._handle(connection_id))
        if self._state and self._state.connection.id == connection_id:
            self._set_state(self._state.connection, HandleState.READY, status="Healthy", snapshot=snapshot)
        return snapshot

    async def refresh_active(self) -> ServerSnapshot | None:
        """Re-poll server info for the active connection."""

        if not self._state:
            return None
        connection = self._state.connection
        try:
            return await self.server_info(connection.id)
        except RedisUiError as exc:
            handle = self._registry.lookup(connection.id)
            state = handle.state if handle else HandleState.CLOSED
            self._set_state(connection, state, status="Degraded", last_error=exc.message)
            return None

    async def shutdown(self) -> None:
        """Close every session; the manager is unusable afterwards."""

        await self._registry.release_all()
        self._listeners.clear()

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Subscribe to session updates; returns an unsubscribe handle."""

        self._listeners.add(listener)
        if self._state:
            listener(self._state)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def _handle(self, connection_id: str) -> ConnectionHandle:
        if not connection_id:
            raise NotFoundError("Missing connection ID.")
        handle = self._registry.lookup(connection_id)
        if handle is None:
            raise NotFoundError("Redis connection not found.")
        return handle

    def _resolve(self, config: ConnectionConfig) -> ConnectionConfig:
        """Swap a caller-supplied config for the stored environment one.

        Environment entries are listed without passwords, so the catalog copy
        is the only one that can authenticate. User configs may not claim an
        environment id.
        """

        stored = next((entry for entry in self._environment if entry.id == config.id), None)
        if stored is None:
            if config.is_environment:
                raise NotFoundError(f"Environment connection '{config.id}' not found.")
            return config
        if not config.is_environment:
            raise ConfigError(f"Connection id '{config.id}' is reserved by an environment connection.")
        return stored

    def _default_session_factory(self, config: ConnectionConfig) -> RedisClientSession:
        return RedisClientSession(
            config,
            connect_timeout=self._config.connect_timeout,
            retries=self._config.retries,
        )

    def _ensure_mutable(self, connection_id: str) -> None:
        if any(config.id == connection_id for config in self._environment):
            raise ConfigError("Environment connections cannot be modified.")

    async def _drop_session(self, connection_id: str) -> None:
        await self._registry.release(connection_id)
        if self._state and self._state.connection.id == connection_id:
            self._state = None

    def _is_known(self, connection_id: str, *, include_adhoc: bool = True) -> bool:
        if any(config.id == connection_id for config in self.connections):
            return True
        return include_adhoc and connection_id in self._adhoc

    def _save(self) -> None:
        if self._persist:
            save_config(self._config)

    @staticmethod
    def _user_config(profile: ConnectionProfileConfig) -> ConnectionConfig | None:
        try:
            return profile.to_connection()
        except ConfigError as exc:
            LOG.warning("Skipping invalid connection", extra={"connection": profile.id, "reason": exc.message})
            return None

    def _set_state(
        self,
        connection: ConnectionConfig,
        handle_state: HandleState,
        *,
        status: str,
        snapshot: ServerSnapshot | None = None,
        last_error: str | None = None,
    ) -> None:
        previous = self._state
        if snapshot is None and previous and previous.connection.id == connection.id and last_error is None:
            snapshot = previous.snapshot
        self._state = SessionState(
            connection=connection,
            handle_state=handle_state,
            refreshed_at=datetime.now(tz=timezone.utc),
            snapshot=snapshot,
            status=status,
            last_error=last_error,
        )
        self._notify()

    def _notify(self) -> None:
        if not self._state:
            return
        for listener in tuple(self._listeners):
            listener(self._state)


__all__ = [
    "ConnectResult",
    "SessionManager",
    "SessionState",
]
