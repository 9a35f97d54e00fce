"""JSON-shaped facade over the session manager.

Each method takes request-style payloads and returns an ``ApiResponse`` that
an HTTP layer can serialize directly. Exceptions never cross this boundary:
domain errors become their message and status, anything else a generic 500.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Mapping

from .config import to_connection_config
from .errors import InvalidRequestError, RedisUiError
from .models import ConnectionSource, KeyDescriptor, ZSetMember
from .session import SessionManager

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ApiResponse:
    ok: bool
    status: int
    data: Any = None
    error: str | None = None

    @classmethod
    def success(cls, data: Any = None, *, status: int = 200) -> ApiResponse:
        return cls(ok=True, status=status, data=data)

    @classmethod
    def failure(cls, message: str, *, status: int = 500) -> ApiResponse:
        return cls(ok=False, status=status, error=message)

    def body(self) -> dict[str, Any]:
        if not self.ok:
            return {"error": self.error}
        if isinstance(self.data, dict):
            return self.data
        return {"result": self.data}


class ConsoleApi:
    """Request adapters for connect, keys, commands and server info."""

    def __init__(self, manager: SessionManager) -> None:
        self._manager = manager

    async def connect(self, payload: Mapping[str, Any]) -> ApiResponse:
        """Accepts a bare config or ``{"config": ..., "isEnvironmentConnection": bool}``."""

        async def _run() -> dict[str, Any]:
            if "host" in payload and "port" in payload:
                raw_config: Any = payload
                is_environment = False
            else:
                raw_config = payload.get("config")
                if not isinstance(raw_config, Mapping):
                    raise InvalidRequestError("Missing connection configuration.")
                is_environment = bool(payload.get("isEnvironmentConnection", False))
            source = ConnectionSource.ENVIRONMENT if is_environment else ConnectionSource.USER
            config = to_connection_config(raw_config, source=source)
            result = await self._manager.connect(config, is_environment=is_environment)
            return {"success": True, "id": result.id, "isEnvironmentConnection": result.is_environment}

        return await self._respond("connect to Redis", _run())

    async def disconnect(self, payload: Mapping[str, Any]) -> ApiResponse:
        async def _run() -> dict[str, Any]:
            connection_id = _require(payload, "id", message="Missing connection ID.")
            await self._manager.disconnect(connection_id)
            return {"success": True}

        return await self._respond("disconnect from Redis", _run())

    async def list_keys(self, params: Mapping[str, Any]) -> ApiResponse:
        async def _run() -> dict[str, Any]:
            connection_id = _require(params, "connectionId", message="Missing connection ID.")
            pattern = params.get("pattern") or "*"
            descriptors = await self._manager.list_keys(connection_id, pattern)
            return {"keys": [descriptor.to_dict() for descriptor in descriptors]}

        return await self._respond("fetch Redis keys", _run())

    async def get_key(self, params: Mapping[str, Any]) -> ApiResponse:
        async def _run() -> dict[str, Any]:
            connection_id = _require(params, "connectionId")
            key = _require(params, "key")
            value = await self._manager.get_key(connection_id, key, params.get("type") or None)
            return {"value": _jsonable(value)}

        return await self._respond("fetch Redis key value", _run())

    async def set_key(self, payload: Mapping[str, Any]) -> ApiResponse:
        async def _run() -> dict[str, Any]:
            connection_id = _require(payload, "connectionId")
            key = _require(payload, "key")
            key_type = _require(payload, "type")
            if "value" not in payload:
                raise InvalidRequestError("Missing required parameters.")
            await self._manager.set_key(connection_id, key, payload["value"], key_type)
            return {"success": True}

        return await self._respond("set Redis key value", _run())

    async def delete_key(self, params: Mapping[str, Any]) -> ApiResponse:
        async def _run() -> dict[str, Any]:
            connection_id = _require(params, "connectionId")
            key = _require(params, "key")
            await self._manager.delete_key(connection_id, key)
            return {"success": True}

        return await self._respond("delete Redis key", _run())

    async def command(self, payload: Mapping[str, Any]) -> ApiResponse:
        async def _run() -> dict[str, Any]:
            connection_id = _require(payload, "connectionId")
            command_line = _require(payload, "command")
            result = await self._manager.run_command(connection_id, command_line)
            return {"result": _jsonable(result.result)}

        return await self._respond("execute Redis command", _run())

    async def server_info(self, params: Mapping[str, Any]) -> ApiResponse:
        async def _run() -> dict[str, Any]:
            connection_id = _require(params, "connectionId", message="Missing connection ID.")
            snapshot = await self._manager.server_info(connection_id)
            return snapshot.to_dict()

        return await self._respond("fetch Redis info", _run())

    async def environment_connections(self) -> ApiResponse:
        async def _run() -> list[dict[str, object]]:
            connections = self._manager.environment_connections()
            LOG.info("Serving environment connections", extra={"count": len(connections)})
            return [config.to_dict() for config in connections]

        return await self._respond("fetch environment connections", _run())

    async def _respond(self, operation: str, call: Awaitable[Any]) -> ApiResponse:
        try:
            data = await call
        except RedisUiError as exc:
            LOG.warning("Request failed", extra={"operation": operation, "status": exc.status, "reason": exc.message})
            return ApiResponse.failure(exc.message or f"Failed to {operation}", status=exc.status)
        except Exception:
            LOG.exception("Unexpected failure", extra={"operation": operation})
            return ApiResponse.failure(f"Failed to {operation}", status=500)
        return ApiResponse.success(data)


def _require(params: Mapping[str, Any], name: str, *, message: str = "Missing required parameters.") -> str:
    value = params.get(name)
    if value in (None, ""):
        raise InvalidRequestError(message)
    return str(value)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (ZSetMember, KeyDescriptor)):
        return value.to_dict()
    if isinstance(value, (set, frozenset)):
        return sorted((_jsonable(item) for item in value), key=str)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Mapping):
        return {str(name): _jsonable(item) for name, item in value.items()}
    return value


__all__ = ["ApiResponse", "ConsoleApi"]
