"""Error taxonomy shared by the registry, codec and console facade."""

from __future__ import annotations


class RedisUiError(RuntimeError):
    """Base class for failures that can be reported to the operator."""

    status: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(RedisUiError):
    """Raised for unknown connection ids or keys that do not exist."""

    status = 404


class ConfigError(RedisUiError):
    """Raised when a connection configuration is missing or invalid."""

    status = 400


class InvalidRequestError(RedisUiError):
    """Raised when a request is malformed before it reaches the store."""

    status = 400


class UnsupportedTypeError(RedisUiError):
    """Raised when the codec meets a type it cannot decode or encode."""

    status = 400


class UpstreamError(RedisUiError):
    """Raised when the store rejects or fails a command."""

    status = 502


class ConnectionLostError(UpstreamError):
    """Raised when the session drops mid-command; the store never answered."""


class CommandExecutionError(UpstreamError):
    """Raised when an ad-hoc command is rejected by the store."""


class DecodeFallbackWarning(UserWarning):
    """Emitted when the JSON module path is unavailable and a fallback is used."""


__all__ = [
    "CommandExecutionError",
    "ConfigError",
    "ConnectionLostError",
    "DecodeFallbackWarning",
    "InvalidRequestError",
    "NotFoundError",
    "RedisUiError",
    "UnsupportedTypeError",
    "UpstreamError",
]
