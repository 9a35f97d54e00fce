"""Shared fakes: an in-memory store behind the ClientSession protocol."""

from __future__ import annotations

import asyncio
import fnmatch
from typing import Any, Callable, Sequence

import pytest

from redisui.connections import HandleState, StateListener
from redisui.errors import ConnectionLostError, UpstreamError
from redisui.models import ConnectionConfig

INFO_REPORT = """# Server
redis_version:7.2.4
redis_mode:standalone
os:Linux 6.1.0 x86_64
uptime_in_seconds:90061

# Clients
connected_clients:3
blocked_clients:0
maxclients:10000

# Memory
used_memory_human:1.05M
used_memory_peak_human:2.00M
used_memory_rss_human:512K
mem_fragmentation_ratio:1.50

# Stats
total_connections_received:12
total_commands_processed:345
instantaneous_ops_per_sec:7
keyspace_hits:70
keyspace_misses:30

# Keyspace
db0:keys=4,expires=1,avg_ttl=1200
"""


class FakeStore:
    """Tiny subset of Redis semantics, enough for codec and listing tests."""

    def __init__(self, *, json_module: bool = False) -> None:
        self.data: dict[str, tuple[str, Any]] = {}
        self.ttl: dict[str, int] = {}
        self.json_module = json_module
        self.info_report = INFO_REPORT
        self.memory_usage_supported = True
        self.log: list[tuple[str, ...]] = []

    def execute(self, *args: object) -> Any:
        verb, *rest = [str(arg) for arg in args]
        verb = verb.upper()
        self.log.append((verb, *rest))
        handler = getattr(self, f"_cmd_{verb.replace('.', '_').lower()}", None)
        if handler is None:
            raise UpstreamError(f"ERR unknown command '{verb}'")
        return handler(*rest)

    def _typed(self, key: str, expected: str) -> Any:
        entry = self.data.get(key)
        if entry is None:
            return None
        kind, value = entry
        if kind != expected:
            raise UpstreamError("WRONGTYPE Operation against a key holding the wrong kind of value")
        return value

    def _cmd_ping(self) -> str:
        return "PONG"

    def _cmd_get(self, key: str) -> Any:
        return self._typed(key, "string")

    def _cmd_set(self, key: str, value: str) -> str:
        self.data[key] = ("string", value)
        return "OK"

    def _cmd_del(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttl.pop(key, None)
        return removed

    def _cmd_type(self, key: str) -> str:
        entry = self.data.get(key)
        return entry[0] if entry else "none"

    def _cmd_ttl(self, key: str) -> int:
        if key not in self.data:
            return -2
        return self.ttl.get(key, -1)

    def _cmd_memory(self, sub: str, key: str) -> Any:
        if not self.memory_usage_supported:
            raise UpstreamError("ERR unknown subcommand 'USAGE'")
        entry = self.data.get(key)
        if entry is None:
            return None
        return 48 + len(str(entry[1]))

    def _cmd_hset(self, key: str, *pairs: str) -> int:
        current = self._typed(key, "hash") or {}
        added = 0
        for index in range(0, len(pairs), 2):
            if pairs[index] not in current:
                added += 1
            current[pairs[index]] = pairs[index + 1]
        self.data[key] = ("hash", current)
        return added

    def _cmd_hgetall(self, key: str) -> dict[str, str]:
        return dict(self._typed(key, "hash") or {})

    def _cmd_rpush(self, key: str, *items: str) -> int:
        current = self._typed(key, "list") or []
        current.extend(items)
        self.data[key] = ("list", current)
        return len(current)

    def _cmd_lrange(self, key: str, start: str, stop: str) -> list[str]:
        return list(self._typed(key, "list") or [])

    def _cmd_sadd(self, key: str, *members: str) -> int:
        current = self._typed(key, "set") or set()
        before = len(current)
        current.update(members)
        self.data[key] = ("set", current)
        return len(current) - before

    def _cmd_smembers(self, key: str) -> set[str]:
        return set(self._typed(key, "set") or set())

    def _cmd_zadd(self, key: str, *args: str) -> int:
        current = self._typed(key, "zset") or {}
        added = 0
        for index in range(0, len(args), 2):
            member = args[index + 1]
            if member not in current:
                added += 1
            current[member] = float(args[index])
        self.data[key] = ("zset", current)
        return added

    def _cmd_zrange(self, key: str, start: str, stop: str, *flags: str) -> list[str]:
        current = self._typed(key, "zset") or {}
        flat: list[str] = []
        for member, score in sorted(current.items(), key=lambda item: (item[1], item[0])):
            flat.extend((member, repr(score)))
        return flat

    def _cmd_scan(self, cursor: str, *options: str) -> tuple[int, list[str]]:
        pattern = "*"
        if "MATCH" in options:
            pattern = options[options.index("MATCH") + 1]
        return 0, [key for key in self.data if fnmatch.fnmatchcase(key, pattern)]

    def _cmd_info(self, *sections: str) -> str:
        return self.info_report

    def _cmd_json_get(self, key: str, *paths: str) -> Any:
        if not self.json_module:
            raise UpstreamError("ERR unknown command 'JSON.GET'")
        entry = self.data.get(key)
        if entry is None:
            return None
        return entry[1]

    def _cmd_json_set(self, key: str, path: str, payload: str) -> str:
        if not self.json_module:
            raise UpstreamError("ERR unknown command 'JSON.SET'")
        self.data[key] = ("ReJSON-RL", payload)
        return "OK"


class FakeSession:
    """ClientSession double driven by a shared ``FakeStore``."""

    def __init__(
        self,
        config: ConnectionConfig,
        store: FakeStore,
        *,
        fail_open: bool = False,
        fail_quit: bool = False,
        open_delay: float = 0.0,
    ) -> None:
        self.config = config
        self.store = store
        self.fail_open = fail_open
        self.fail_quit = fail_quit
        self.open_delay = open_delay
        self.quit_calls = 0
        self.terminate_calls = 0
        self._state = HandleState.ABSENT
        self._listeners: set[StateListener] = set()

    @property
    def state(self) -> HandleState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.add(listener)
        return lambda: self._listeners.discard(listener)

    async def open(self) -> None:
        self._transition(HandleState.CONNECTING)
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.fail_open:
            self._transition(HandleState.ERROR)
            raise UpstreamError(f"Failed to connect to '{self.config.name}'")
        self._transition(HandleState.READY)

    async def call(self, *args: object) -> Any:
        if self._state is not HandleState.READY:
            raise ConnectionLostError("Connection is closed.")
        return self.store.execute(*args)

    async def batch(self, commands: Sequence[Sequence[object]]) -> list[Any]:
        return [await self.call(*command) for command in commands]

    async def quit(self) -> None:
        self.quit_calls += 1
        if self.fail_quit:
            raise UpstreamError("QUIT failed")
        self._transition(HandleState.CLOSED)

    async def terminate(self) -> None:
        self.terminate_calls += 1
        self._transition(HandleState.CLOSED)

    def end(self) -> None:
        """Simulate the server dropping the connection."""

        self._transition(HandleState.ERROR)
        self._transition(HandleState.CLOSED)

    def _transition(self, state: HandleState) -> None:
        if state is self._state:
            return
        self._state = state
        for listener in tuple(self._listeners):
            listener(state)


class SessionFactory:
    """Records every session it builds so tests can poke at them."""

    def __init__(self, store: FakeStore | None = None, **session_options: Any) -> None:
        self.store = store or FakeStore()
        self.session_options = session_options
        self.sessions: list[FakeSession] = []

    def __call__(self, config: ConnectionConfig) -> FakeSession:
        session = FakeSession(config, self.store, **self.session_options)
        self.sessions.append(session)
        return session


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def session_factory(store: FakeStore) -> SessionFactory:
    return SessionFactory(store)


@pytest.fixture
def ready_session(store: FakeStore) -> FakeSession:
    """A session already in the ready state, usable as a CommandTarget."""

    session = FakeSession(ConnectionConfig(id="fake", name="Fake", host="localhost", port=6379), store)
    session._state = HandleState.READY
    return session


def make_config(connection_id: str = "local", **overrides: Any) -> ConnectionConfig:
    options: dict[str, Any] = {"name": "Local", "host": "localhost", "port": 6379}
    options.update(overrides)
    return ConnectionConfig(id=connection_id, **options)
