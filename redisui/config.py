"""App configuration loading helpers."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping
from urllib.parse import unquote, urlsplit
from uuid import uuid4

import tomllib

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError
from .models import ConnectionConfig, ConnectionSource

CONFIG_FILE = Path.home() / ".config" / "redisui" / "config.toml"

DEFAULT_PORT = 6379

LOG = logging.getLogger(__name__)


class LayoutState(BaseModel):
    """Persisted layout hints for the TUI."""

    sidebar_width: int | None = None


class ConnectionProfileConfig(BaseModel):
    """User connection stored in config.toml."""

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    name: str
    host: str = "localhost"
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    username: str | None = None
    password: str | None = None
    tls: bool = False

    def to_connection(self) -> ConnectionConfig:
        return ConnectionConfig(
            id=self.id,
            name=self.name,
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            tls=self.tls,
            source=ConnectionSource.USER,
        )


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    theme: str = "dark"
    log_level: str = "WARNING"
    log_file: str | None = None
    connect_timeout: float = 10.0
    retries: int = 3
    connections: list[ConnectionProfileConfig] = Field(default_factory=lambda: list(_default_connections()))
    active_connection: str | None = None
    layout: LayoutState = Field(default_factory=LayoutState)

    def with_active_connection(self, connection_id: str | None) -> AppConfig:
        """Return a copy with the active connection updated."""

        return self.model_copy(update={"active_connection": connection_id})

    def with_connection(self, profile: ConnectionProfileConfig) -> AppConfig:
        """Return a copy with the profile added or replaced (matched by id)."""

        connections = [entry for entry in self.connections if entry.id != profile.id]
        connections.append(profile)
        return self.model_copy(update={"connections": connections})

    def without_connection(self, connection_id: str) -> AppConfig:
        """Return a copy with the profile removed."""

        connections = [entry for entry in self.connections if entry.id != connection_id]
        update: dict[str, object] = {"connections": connections}
        if self.active_connection == connection_id:
            update["active_connection"] = None
        return self.model_copy(update=update)

    def with_layout(self, **updates: object) -> AppConfig:
        """Return a copy with layout state changes applied."""

        layout = self.layout.model_copy(update=updates)
        return self.model_copy(update={"layout": layout})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        LOG.warning("Ignoring unreadable config file", extra={"path": str(CONFIG_FILE)})
        return AppConfig()

    connections: list[ConnectionProfileConfig] | None = None
    raw_connections = data.pop("connections", None)
    if isinstance(raw_connections, list):
        connections = []
        for entry in raw_connections:
            try:
                connections.append(ConnectionProfileConfig(**entry))
            except ValidationError as exc:
                LOG.warning(
                    "Skipping invalid connection profile",
                    extra={"profile": entry.get("name"), "errors": exc.error_count()},
                )
    if connections is not None:
        data["connections"] = connections
    try:
        return AppConfig(**data)
    except ValidationError:
        LOG.warning("Config file failed validation; using defaults", extra={"path": str(CONFIG_FILE)})
        return AppConfig()


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f"theme = {_quote(config.theme)}",
        f"log_level = {_quote(config.log_level)}",
        f"connect_timeout = {config.connect_timeout}",
        f"retries = {config.retries}",
    ]
    if config.log_file:
        lines.append(f"log_file = {_quote(config.log_file)}")
    if config.active_connection:
        lines.append(f"active_connection = {_quote(config.active_connection)}")
    if config.layout.sidebar_width is not None:
        lines.append("")
        lines.append("[layout]")
        lines.append(f"sidebar_width = {config.layout.sidebar_width}")
    if config.connections:
        lines.append("")
        for profile in config.connections:
            lines.append("[[connections]]")
            lines.append(f"id = {_quote(profile.id)}")
            lines.append(f"name = {_quote(profile.name)}")
            lines.append(f"host = {_quote(profile.host)}")
            lines.append(f"port = {profile.port}")
            if profile.username:
                lines.append(f"username = {_quote(profile.username)}")
            if profile.password:
                lines.append(f"password = {_quote(profile.password)}")
            if profile.tls:
                lines.append("tls = true")
            lines.append("")
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def environment_connections(environ: Mapping[str, str] | None = None) -> tuple[ConnectionConfig, ...]:
    """Discover connections declared in the process environment.

    ``REDIS_URL`` and ``REDIS_URL_<NAME>`` hold ``redis://`` or ``rediss://``
    URLs. Without ``REDIS_URL`` the discrete ``REDIS_HOST``/``REDIS_PORT``/
    ``REDIS_USERNAME``/``REDIS_PASSWORD``/``REDIS_TLS``/``REDIS_NAME`` variables
    describe the default connection. Malformed entries are skipped.
    """

    env = os.environ if environ is None else environ
    found: list[ConnectionConfig] = []
    if env.get("REDIS_URL"):
        _append_env(found, "REDIS_URL", lambda: _from_url("env-default", "Environment", env["REDIS_URL"]))
    elif env.get("REDIS_HOST"):
        _append_env(found, "REDIS_HOST", lambda: _from_discrete(env))
    for variable in sorted(env):
        if not variable.startswith("REDIS_URL_") or not env[variable]:
            continue
        suffix = variable[len("REDIS_URL_"):]
        if not suffix:
            continue
        name = suffix.replace("_", " ").title()
        _append_env(found, variable, lambda s=suffix, n=name, v=variable: _from_url(f"env-{s.lower()}", n, env[v]))
    return tuple(found)


def to_connection_config(data: Mapping[str, object], *, source: ConnectionSource = ConnectionSource.USER) -> ConnectionConfig:
    """Validate an untrusted mapping (e.g. a request body) into a config."""

    fields = {
        key: value
        for key, value in data.items()
        if key in ConnectionProfileConfig.model_fields and value is not None
    }
    if not fields.get("host"):
        raise ConfigError("Missing required connection parameters: host.")
    if fields.get("port") in (None, ""):
        raise ConfigError("Missing required connection parameters: port.")
    if not fields.get("name"):
        fields["name"] = str(fields["host"])
    try:
        profile = ConnectionProfileConfig(**fields)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigError(f"Invalid connection parameter '{location}': {first.get('msg')}") from exc
    config = profile.to_connection()
    if source is ConnectionSource.USER:
        return config
    return ConnectionConfig(
        id=config.id,
        name=config.name,
        host=config.host,
        port=config.port,
        username=config.username,
        password=config.password,
        tls=config.tls,
        source=source,
    )


def _append_env(found: list[ConnectionConfig], variable: str, build) -> None:  # type: ignore[no-untyped-def]
    try:
        found.append(build())
    except (ConfigError, ValueError) as exc:
        LOG.warning("Skipping malformed environment connection", extra={"variable": variable, "reason": str(exc)})


def _from_url(connection_id: str, name: str, url: str) -> ConnectionConfig:
    parts = urlsplit(url)
    if parts.scheme not in ("redis", "rediss"):
        raise ConfigError(f"Unsupported URL scheme '{parts.scheme}'.")
    return ConnectionConfig(
        id=connection_id,
        name=name,
        host=parts.hostname or "",
        port=parts.port or DEFAULT_PORT,
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
        tls=parts.scheme == "rediss",
        source=ConnectionSource.ENVIRONMENT,
    )


def _from_discrete(env: Mapping[str, str]) -> ConnectionConfig:
    port_text = env.get("REDIS_PORT") or str(DEFAULT_PORT)
    try:
        port = int(port_text)
    except ValueError:
        raise ConfigError(f"REDIS_PORT must be an integer, got '{port_text}'.") from None
    return ConnectionConfig(
        id="env-default",
        name=env.get("REDIS_NAME") or "Environment",
        host=env.get("REDIS_HOST", ""),
        port=port,
        username=env.get("REDIS_USERNAME") or None,
        password=env.get("REDIS_PASSWORD") or None,
        tls=env.get("REDIS_TLS", "").strip().lower() in {"1", "true", "yes", "on"},
        source=ConnectionSource.ENVIRONMENT,
    )


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    if not isinstance(raw, dict):
        return data
    for key in ("theme", "log_level", "log_file", "active_connection"):
        value = raw.get(key)
        if isinstance(value, str):
            data[key] = value
    timeout = raw.get("connect_timeout")
    if isinstance(timeout, (int, float)) and not isinstance(timeout, bool):
        data["connect_timeout"] = float(timeout)
    retries = raw.get("retries")
    if isinstance(retries, int) and not isinstance(retries, bool):
        data["retries"] = retries
    connections = raw.get("connections")
    if isinstance(connections, list):
        data["connections"] = [entry for entry in connections if isinstance(entry, dict) and entry.get("name")]
    layout = raw.get("layout")
    if isinstance(layout, dict):
        state: dict[str, object] = {}
        sidebar_width = layout.get("sidebar_width")
        if isinstance(sidebar_width, int):
            state["sidebar_width"] = sidebar_width
        data["layout"] = LayoutState(**state)
    return data


def _default_connections() -> tuple[ConnectionProfileConfig, ...]:
    """Default connection shown on first run before config is customized."""

    return (
        ConnectionProfileConfig(
            id="local",
            name="Local Redis",
            host="localhost",
            port=DEFAULT_PORT,
        ),
    )


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "ConnectionProfileConfig",
    "LayoutState",
    "environment_connections",
    "load_config",
    "save_config",
    "to_connection_config",
]
