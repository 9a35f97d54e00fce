"""Key listing helpers for the browser pane."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .connections import CommandTarget
from .errors import ConnectionLostError, RedisUiError, UnsupportedTypeError, UpstreamError
from .models import KeyDescriptor, KeyType

LOG = logging.getLogger(__name__)

SCAN_COUNT = 500
DESCRIBE_CHUNK = 100


async def scan_keys(target: CommandTarget, pattern: str = "*", *, count: int = SCAN_COUNT) -> list[str]:
    """Collect keys matching ``pattern`` with a SCAN cursor loop."""

    keys: set[str] = set()
    cursor: Any = "0"
    while True:
        cursor, batch = await target.call("SCAN", str(cursor), "MATCH", pattern or "*", "COUNT", str(count))
        keys.update(str(key) for key in batch)
        if int(cursor) == 0:
            break
    return sorted(keys)


async def describe_key(target: CommandTarget, key: str) -> KeyDescriptor:
    """Build a listing row; failures are recorded on the row, not raised."""

    type_reply, ttl_reply, size = await asyncio.gather(
        target.call("TYPE", key),
        target.call("TTL", key),
        memory_usage(target, key),
        return_exceptions=True,
    )
    ttl = ttl_reply if isinstance(ttl_reply, int) else -1
    if isinstance(ttl_reply, BaseException):
        LOG.debug("TTL lookup failed", extra={"key": key, "reason": str(ttl_reply)})
    size_bytes = size if isinstance(size, int) else 0
    if isinstance(type_reply, BaseException):
        if not isinstance(type_reply, RedisUiError):
            raise type_reply
        return KeyDescriptor(key=key, type=None, ttl_seconds=ttl, approx_size_bytes=size_bytes, error=str(type_reply))
    raw_type = str(type_reply)
    try:
        key_type = KeyType.parse(raw_type)
    except UnsupportedTypeError as exc:
        return KeyDescriptor(
            key=key,
            type=None,
            ttl_seconds=ttl,
            approx_size_bytes=size_bytes,
            raw_type=raw_type,
            error=str(exc),
        )
    return KeyDescriptor(key=key, type=key_type, ttl_seconds=ttl, approx_size_bytes=size_bytes, raw_type=raw_type)


async def memory_usage(target: CommandTarget, key: str) -> int:
    """``MEMORY USAGE`` in bytes; stores that reject it report ``0``."""

    try:
        reply = await target.call("MEMORY", "USAGE", key)
    except ConnectionLostError:
        raise
    except UpstreamError as exc:
        LOG.debug("MEMORY USAGE rejected", extra={"key": key, "reason": str(exc)})
        return 0
    return int(reply) if reply is not None else 0


async def list_keys(target: CommandTarget, pattern: str = "*") -> list[KeyDescriptor]:
    """Describe every key matching ``pattern``."""

    keys = await scan_keys(target, pattern)
    descriptors: list[KeyDescriptor] = []
    for start in range(0, len(keys), DESCRIBE_CHUNK):
        chunk = keys[start : start + DESCRIBE_CHUNK]
        descriptors.extend(await asyncio.gather(*(describe_key(target, key) for key in chunk)))
    return descriptors


__all__ = ["describe_key", "list_keys", "memory_usage", "scan_keys"]
