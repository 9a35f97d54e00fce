"""Client sessions and the registry that owns them."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, AsyncIterator, Callable, Protocol, Sequence, runtime_checkable

import redis.asyncio as aioredis
from redis import exceptions as redis_errors
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff

from .errors import ConnectionLostError, RedisUiError, UpstreamError
from .models import ConnectionConfig

LOG = logging.getLogger(__name__)


class HandleState(str, Enum):
    """Lifecycle of a client session."""

    ABSENT = "absent"
    CONNECTING = "connecting"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


LIVE_STATES = frozenset({HandleState.CONNECTING, HandleState.READY})

StateListener = Callable[[HandleState], None]


@runtime_checkable
class CommandTarget(Protocol):
    """Anything that can run store commands (sessions and handles)."""

    async def call(self, *args: object) -> Any:
        """Run a single command and return the decoded reply."""

    async def batch(self, commands: Sequence[Sequence[object]]) -> list[Any]:
        """Run commands as one MULTI/EXEC transaction."""


@runtime_checkable
class ClientSession(CommandTarget, Protocol):
    """Protocol implemented by client sessions owned by the registry."""

    @property
    def state(self) -> HandleState:
        """Current lifecycle state."""

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Subscribe to lifecycle transitions; returns an unsubscribe handle."""

    async def open(self) -> None:
        """Establish the session; raises ``UpstreamError`` on failure."""

    async def quit(self) -> None:
        """Terminate gracefully at the protocol level."""

    async def terminate(self) -> None:
        """Force the transport closed."""


SessionFactory = Callable[[ConnectionConfig], ClientSession]


def _passthrough(response: Any, **options: Any) -> Any:
    return response


class RedisClientSession:
    """Client session backed by ``redis.asyncio``.

    Transient connection failures are retried by the client's own ``Retry``
    policy. A connection error that survives it moves the session to
    ``error`` and then ``closed``, which is how the registry learns that the
    transport has ended.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        *,
        connect_timeout: float = 10.0,
        retries: int = 3,
    ) -> None:
        self._config = config
        self._state = HandleState.ABSENT
        self._listeners: set[StateListener] = set()
        self._client = aioredis.Redis(
            host=config.host,
            port=config.port,
            username=config.username or None,
            password=config.password or None,
            ssl=config.tls,
            decode_responses=True,
            socket_connect_timeout=connect_timeout,
            retry=Retry(ExponentialBackoff(cap=2.0, base=0.05), retries),
            retry_on_error=[redis_errors.ConnectionError, redis_errors.TimeoutError],
        )
        # The info translator parses the raw report itself.
        self._client.set_response_callback("INFO", _passthrough)

    @property
    def state(self) -> HandleState:
        return self._state

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def open(self) -> None:
        self._transition(HandleState.CONNECTING)
        try:
            await self._client.ping()
        except redis_errors.RedisError as exc:
            self._transition(HandleState.ERROR)
            await self._close_client()
            raise UpstreamError(
                f"Failed to connect to '{self._config.name}' ({self._config.host}:{self._config.port}): {exc}"
            ) from exc
        self._transition(HandleState.READY)

    async def call(self, *args: object) -> Any:
        try:
            result = await self._client.execute_command(*args)
        except (redis_errors.ConnectionError, redis_errors.TimeoutError) as exc:
            await self._end(exc)
            raise ConnectionLostError(f"Connection to '{self._config.name}' lost: {exc}") from exc
        except redis_errors.RedisError as exc:
            raise UpstreamError(str(exc)) from exc
        self._mark_ready()
        return result

    async def batch(self, commands: Sequence[Sequence[object]]) -> list[Any]:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                for command in commands:
                    pipe.execute_command(*command)
                results = await pipe.execute()
        except (redis_errors.ConnectionError, redis_errors.TimeoutError) as exc:
            await self._end(exc)
            raise ConnectionLostError(f"Connection to '{self._config.name}' lost: {exc}") from exc
        except redis_errors.RedisError as exc:
            raise UpstreamError(str(exc)) from exc
        self._mark_ready()
        return list(results)

    async def quit(self) -> None:
        try:
            await self._client.execute_command("QUIT")
        except redis_errors.ConnectionError:
            # Servers may drop the socket before replying to QUIT.
            pass
        except redis_errors.RedisError as exc:
            raise UpstreamError(f"QUIT failed for '{self._config.name}': {exc}") from exc
        await self._client.aclose()
        self._transition(HandleState.CLOSED)

    async def terminate(self) -> None:
        await self._close_client()
        self._transition(HandleState.CLOSED)

    async def _end(self, exc: BaseException) -> None:
        LOG.warning(
            "Session ended",
            extra={"connection": self._config.id, "reason": str(exc)},
        )
        self._transition(HandleState.ERROR)
        await self._close_client()
        self._transition(HandleState.CLOSED)

    async def _close_client(self) -> None:
        try:
            await self._client.connection_pool.disconnect(inuse_connections=True)
            await self._client.aclose()
        except (redis_errors.RedisError, OSError):  # pragma: no cover - best effort cleanup
            LOG.debug("Ignoring error while closing client", exc_info=True)

    def _mark_ready(self) -> None:
        if self._state in (HandleState.CONNECTING, HandleState.ERROR):
            self._transition(HandleState.READY)

    def _transition(self, state: HandleState) -> None:
        if state is self._state:
            return
        LOG.debug(
            "Session state change",
            extra={"connection": self._config.id, "from": self._state.value, "to": state.value},
        )
        self._state = state
        for listener in tuple(self._listeners):
            listener(state)


@dataclass(eq=False)
class ConnectionHandle:
    """Registry-owned wrapper around a live session; callers only borrow it."""

    config: ConnectionConfig
    session: ClientSession
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))
    _unsubscribe: Callable[[], None] | None = field(default=None, repr=False)

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def state(self) -> HandleState:
        return self.session.state

    @property
    def is_live(self) -> bool:
        return self.session.state in LIVE_STATES

    async def call(self, *args: object) -> Any:
        return await self.session.call(*args)

    async def batch(self, commands: Sequence[Sequence[object]]) -> list[Any]:
        return await self.session.batch(commands)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


class ConnectionRegistry:
    """Maps connection ids to at most one live handle each.

    Mutations are serialized per id with an ``asyncio.Lock``; unrelated ids
    never wait on each other. Construction runs in its own task so a caller
    that gives up on ``acquire`` does not cancel it.
    """

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory: SessionFactory = session_factory or RedisClientSession
        self._handles: dict[str, ConnectionHandle] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._pending: dict[str, asyncio.Future[ConnectionHandle]] = {}
        self._releasing: set[str] = set()

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(self._handles)

    def lookup(self, connection_id: str) -> ConnectionHandle | None:
        """Return the current handle without creating one."""

        return self._handles.get(connection_id)

    async def acquire(self, config: ConnectionConfig) -> ConnectionHandle:
        """Return the live handle for ``config.id``, building one if needed."""

        async with self._guard(config.id):
            handle = self._handles.get(config.id)
            if handle is not None and handle.is_live:
                return handle
            pending = self._pending.get(config.id)
            if pending is None:
                if handle is not None:
                    LOG.info(
                        "Replacing stale session",
                        extra={"connection": config.id, "state": handle.state.value},
                    )
                    await self._release_locked(config.id)
                pending = asyncio.ensure_future(self._construct(config))
                self._pending[config.id] = pending
                pending.add_done_callback(lambda task, cid=config.id: self._clear_pending(cid, task))
        return await asyncio.shield(pending)

    async def release(self, connection_id: str) -> None:
        """Close the session for ``connection_id``; absent ids are a no-op."""

        async with self._guard(connection_id):
            pending = self._pending.get(connection_id)
            if pending is not None:
                try:
                    await asyncio.shield(pending)
                except RedisUiError:
                    # Construction failed; the acquiring caller reports it.
                    pass
            await self._release_locked(connection_id)

    async def release_all(self) -> None:
        """Release every tracked session, logging individual failures."""

        ids = set(self._handles) | set(self._pending)
        LOG.info("Releasing all sessions", extra={"count": len(ids)})
        for connection_id in ids:
            try:
                await self.release(connection_id)
            except Exception:
                LOG.exception("Failed to release session", extra={"connection": connection_id})

    async def _construct(self, config: ConnectionConfig) -> ConnectionHandle:
        LOG.info(
            "Creating session",
            extra={"connection": config.id, "name": config.name, "host": config.host, "port": config.port},
        )
        try:
            session = self._session_factory(config)
        except RedisUiError:
            raise
        except Exception as exc:
            raise UpstreamError(f"Failed to create a client for '{config.name}': {exc}") from exc
        handle = ConnectionHandle(config=config, session=session)
        handle._unsubscribe = session.subscribe(self._state_listener(handle))
        try:
            await session.open()
        except BaseException:
            handle.detach()
            raise
        self._handles[config.id] = handle
        return handle

    async def _release_locked(self, connection_id: str) -> None:
        handle = self._handles.get(connection_id)
        if handle is None:
            return
        LOG.info("Releasing session", extra={"connection": connection_id})
        self._releasing.add(connection_id)
        try:
            try:
                await handle.session.quit()
            except Exception as exc:
                LOG.warning(
                    "Graceful quit failed; forcing disconnect",
                    extra={"connection": connection_id, "reason": str(exc)},
                )
                await handle.session.terminate()
        finally:
            self._releasing.discard(connection_id)
            self._forget(handle)

    def _state_listener(self, handle: ConnectionHandle) -> StateListener:
        def _on_state(state: HandleState) -> None:
            if state is not HandleState.CLOSED:
                return
            if handle.id not in self._releasing and self._handles.get(handle.id) is handle:
                LOG.warning("Session closed unexpectedly; forgetting handle", extra={"connection": handle.id})
            self._forget(handle)

        return _on_state

    def _forget(self, handle: ConnectionHandle) -> None:
        if self._handles.get(handle.id) is handle:
            del self._handles[handle.id]
        handle.detach()
        self._drop_idle_lock(handle.id)

    def _clear_pending(self, connection_id: str, task: asyncio.Future[ConnectionHandle]) -> None:
        if self._pending.get(connection_id) is task:
            del self._pending[connection_id]
            self._drop_idle_lock(connection_id)
        if not task.cancelled() and task.exception() is not None:
            LOG.debug("Session construction failed", extra={"connection": connection_id})

    @asynccontextmanager
    async def _guard(self, connection_id: str) -> AsyncIterator[None]:
        """Hold the per-id lock; the lock is dropped once nobody needs it."""

        lock = self._locks.get(connection_id)
        if lock is None:
            lock = self._locks[connection_id] = asyncio.Lock()
        self._lock_users[connection_id] = self._lock_users.get(connection_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[connection_id] - 1
            if remaining:
                self._lock_users[connection_id] = remaining
            else:
                del self._lock_users[connection_id]
                self._drop_idle_lock(connection_id)

    def _drop_idle_lock(self, connection_id: str) -> None:
        # Waiters still hold a reference to the lock object, so only prune unused ids.
        if connection_id in self._lock_users or connection_id in self._pending or connection_id in self._handles:
            return
        self._locks.pop(connection_id, None)


__all__ = [
    "ClientSession",
    "CommandTarget",
    "ConnectionHandle",
    "ConnectionRegistry",
    "HandleState",
    "LIVE_STATES",
    "RedisClientSession",
    "SessionFactory",
]
