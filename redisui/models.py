"""Shared dataclasses used across connection, codec and session modules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import ConfigError, UnsupportedTypeError


class ConnectionSource(str, Enum):
    """Where a connection configuration came from."""

    ENVIRONMENT = "environment"
    USER = "user"


class KeyType(str, Enum):
    """Value encodings understood by the codec."""

    STRING = "string"
    HASH = "hash"
    LIST = "list"
    SET = "set"
    ZSET = "zset"
    JSON = "json"
    NONE = "none"

    @classmethod
    def parse(cls, tag: "str | KeyType") -> "KeyType":
        """Resolve a store type tag (case-insensitive) to a member."""

        if isinstance(tag, KeyType):
            return tag
        normalized = str(tag).strip().lower()
        normalized = _TYPE_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise UnsupportedTypeError(f"Unsupported Redis data type: {tag}") from None

    @property
    def is_composite(self) -> bool:
        return self in _COMPOSITE_TYPES


_TYPE_ALIASES = {
    "rejson-rl": "json",
    "rejson": "json",
}

_COMPOSITE_TYPES = frozenset({KeyType.HASH, KeyType.LIST, KeyType.SET, KeyType.ZSET})


@dataclass(frozen=True, slots=True)
class ConnectionConfig:
    """Runtime representation of a logical connection."""

    id: str
    name: str
    host: str
    port: int
    username: str | None = None
    password: str | None = None
    tls: bool = False
    source: ConnectionSource = ConnectionSource.USER

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ConfigError("Connection id is required.")
        if not self.host or not self.host.strip():
            raise ConfigError(f"Connection '{self.name or self.id}' is missing a host.")
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ConfigError(f"Port must be an integer, got {self.port!r}.")
        if not 1 <= self.port <= 65535:
            raise ConfigError(f"Port {self.port} is outside the range 1-65535.")

    @property
    def endpoint(self) -> tuple[str, int]:
        return (self.host.lower(), self.port)

    @property
    def is_environment(self) -> bool:
        return self.source is ConnectionSource.ENVIRONMENT

    @property
    def label(self) -> str:
        return f"{self.name} ({self.host}:{self.port})"

    def to_dict(self) -> dict[str, object]:
        """JSON-safe view; the password is never echoed back."""

        return {
            "id": self.id,
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "tls": self.tls,
            "source": self.source.value,
        }


@dataclass(frozen=True, slots=True)
class ZSetMember:
    """One sorted-set entry."""

    member: str
    score: float

    def to_dict(self) -> dict[str, object]:
        return {"member": self.member, "score": self.score}


@dataclass(frozen=True, slots=True)
class KeyDescriptor:
    """Listing row for a single key, recomputed on every request."""

    key: str
    type: KeyType | None
    ttl_seconds: int = -1
    approx_size_bytes: int = 0
    raw_type: str | None = None
    error: str | None = None

    @property
    def exists(self) -> bool:
        return self.type is not KeyType.NONE

    @property
    def size_label(self) -> str:
        return format_size(self.approx_size_bytes)

    def to_dict(self) -> dict[str, object]:
        return {
            "key": self.key,
            "type": self.type.value if self.type is not None else self.raw_type,
            "ttl": self.ttl_seconds,
            "size": self.size_label,
            "sizeBytes": self.approx_size_bytes,
            "error": self.error,
        }


def format_size(size_bytes: int) -> str:
    """Render a byte count as B, KB or MB with one decimal."""

    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


__all__ = [
    "ConnectionConfig",
    "ConnectionSource",
    "KeyDescriptor",
    "KeyType",
    "ZSetMember",
    "format_size",
]
