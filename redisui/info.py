"""Translate the ``INFO`` report into sections and derived metrics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import math
from typing import Mapping

from .connections import CommandTarget

Sections = dict[str, dict[str, str]]


@dataclass(frozen=True, slots=True)
class ServerSection:
    version: str
    mode: str
    os: str
    uptime_seconds: int

    @property
    def uptime(self) -> str:
        return format_uptime(self.uptime_seconds)


@dataclass(frozen=True, slots=True)
class ClientsSection:
    connected: int
    blocked: int
    max_clients: int


@dataclass(frozen=True, slots=True)
class StatsSection:
    total_connections: int
    total_commands: int
    ops_per_sec: int
    hit_rate: int


@dataclass(frozen=True, slots=True)
class KeyspaceEntry:
    db: str
    keys: int
    expires: int
    avg_ttl: int


@dataclass(frozen=True, slots=True)
class MemorySection:
    """Memory figures in megabytes."""

    used: float
    peak: float
    rss: float
    fragmentation: float


@dataclass(frozen=True, slots=True)
class ServerSnapshot:
    """Point-in-time view of server status; each poll builds a new one."""

    server: ServerSection
    clients: ClientsSection
    stats: StatsSection
    keyspace: tuple[KeyspaceEntry, ...]
    memory: MemorySection
    captured_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def primary_keyspace(self) -> KeyspaceEntry:
        if self.keyspace:
            return self.keyspace[0]
        return KeyspaceEntry(db="db0", keys=0, expires=0, avg_ttl=0)

    def to_dict(self) -> dict[str, object]:
        keyspace = self.primary_keyspace
        return {
            "server": {
                "version": self.server.version,
                "mode": self.server.mode,
                "os": self.server.os,
                "uptime": self.server.uptime_seconds,
                "uptimeLabel": self.server.uptime,
            },
            "clients": {
                "connected": self.clients.connected,
                "blocked": self.clients.blocked,
                "maxClients": self.clients.max_clients,
            },
            "stats": {
                "totalConnections": self.stats.total_connections,
                "totalCommands": self.stats.total_commands,
                "opsPerSec": self.stats.ops_per_sec,
                "hitRate": self.stats.hit_rate,
                "keyspace": {"keys": keyspace.keys, "expires": keyspace.expires, "avgTtl": keyspace.avg_ttl},
            },
            "keyspace": [
                {"db": entry.db, "keys": entry.keys, "expires": entry.expires, "avgTtl": entry.avg_ttl}
                for entry in self.keyspace
            ],
            "memory": {
                "used": self.memory.used,
                "peak": self.memory.peak,
                "rss": self.memory.rss,
                "fragmentation": self.memory.fragmentation,
            },
            "capturedAt": self.captured_at.isoformat(),
        }


def parse_sections(report: str) -> Sections:
    """Split a line-oriented report into ``{section: {field: value}}``.

    Field lines that appear before any ``#`` header are dropped.
    """

    sections: Sections = {}
    current: dict[str, str] | None = None
    for line in report.splitlines():
        if line.startswith("#"):
            name = line[1:].strip().lower()
            current = sections.setdefault(name, {})
        elif ":" in line and current is not None:
            name, value = line.split(":", 1)
            name = name.strip()
            if name:
                current[name] = value.strip()
    return sections


def derive_hit_rate(stats: Mapping[str, str]) -> int:
    """Keyspace hit rate as a whole percentage (0 when there is no traffic)."""

    hits = _int(stats.get("keyspace_hits"))
    misses = _int(stats.get("keyspace_misses"))
    total = hits + misses
    if total == 0:
        return 0
    return int(math.floor(100 * hits / total + 0.5))


def parse_memory_scalar(value: str | None) -> float:
    """Convert a human memory figure such as ``1.05M`` into megabytes."""

    if not value:
        return 0.0
    text = value.strip()
    unit = text[-1:].upper()
    try:
        if unit == "K":
            return float(text[:-1]) / 1024
        if unit == "M":
            return float(text[:-1])
        if unit == "G":
            return float(text[:-1]) * 1024
        if unit == "B":
            text = text[:-1]
        return float(text) / (1024 * 1024)
    except ValueError:
        return 0.0


def format_uptime(seconds: int) -> str:
    days, remainder = divmod(int(seconds), 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{days}d {hours}h {minutes}m {secs}s"


def parse_keyspace(section: Mapping[str, str]) -> tuple[KeyspaceEntry, ...]:
    """Turn ``db0:keys=1,expires=0,avg_ttl=0`` rows into entries."""

    entries: list[KeyspaceEntry] = []
    for db, value in section.items():
        fields: dict[str, str] = {}
        for item in value.split(","):
            name, sep, raw = item.partition("=")
            if sep and name and raw:
                fields[name.strip()] = raw.strip()
        entries.append(
            KeyspaceEntry(
                db=db,
                keys=_int(fields.get("keys")),
                expires=_int(fields.get("expires")),
                avg_ttl=_int(fields.get("avg_ttl")),
            )
        )
    return tuple(entries)


def build_snapshot(sections: Mapping[str, Mapping[str, str]]) -> ServerSnapshot:
    server = sections.get("server", {})
    clients = sections.get("clients", {})
    stats = sections.get("stats", {})
    memory = sections.get("memory", {})
    return ServerSnapshot(
        server=ServerSection(
            version=server.get("redis_version") or "unknown",
            mode=server.get("redis_mode") or "standalone",
            os=server.get("os") or "unknown",
            uptime_seconds=_int(server.get("uptime_in_seconds")),
        ),
        clients=ClientsSection(
            connected=_int(clients.get("connected_clients")),
            blocked=_int(clients.get("blocked_clients")),
            max_clients=_int(clients.get("maxclients"), default=10000),
        ),
        stats=StatsSection(
            total_connections=_int(stats.get("total_connections_received")),
            total_commands=_int(stats.get("total_commands_processed")),
            ops_per_sec=_int(stats.get("instantaneous_ops_per_sec")),
            hit_rate=derive_hit_rate(stats),
        ),
        keyspace=parse_keyspace(sections.get("keyspace", {})),
        memory=MemorySection(
            used=parse_memory_scalar(memory.get("used_memory_human")),
            peak=parse_memory_scalar(memory.get("used_memory_peak_human")),
            rss=parse_memory_scalar(memory.get("used_memory_rss_human")),
            fragmentation=_float(memory.get("mem_fragmentation_ratio")),
        ),
    )


async def fetch_snapshot(target: CommandTarget) -> ServerSnapshot:
    report = await target.call("INFO")
    return build_snapshot(parse_sections(str(report or "")))


def _int(value: str | None, *, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        try:
            return int(float(value))
        except ValueError:
            return default


def _float(value: str | None) -> float:
    try:
        return float(value) if value else 0.0
    except ValueError:
        return 0.0


__all__ = [
    "ClientsSection",
    "KeyspaceEntry",
    "MemorySection",
    "ServerSection",
    "ServerSnapshot",
    "StatsSection",
    "build_snapshot",
    "derive_hit_rate",
    "fetch_snapshot",
    "format_uptime",
    "parse_keyspace",
    "parse_memory_scalar",
    "parse_sections",
]
