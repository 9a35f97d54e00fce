"""Value codec: maps each store encoding to a normalized Python value and back.

``decode``/``encode`` are pure. ``read_value``/``write_value`` pair them with
the commands needed to fetch or store a key through any ``CommandTarget``.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence, assert_never
import warnings

from .connections import CommandTarget
from .errors import (
    ConnectionLostError,
    DecodeFallbackWarning,
    InvalidRequestError,
    NotFoundError,
    UnsupportedTypeError,
    UpstreamError,
)
from .models import KeyType, ZSetMember

LOG = logging.getLogger(__name__)

NormalizedValue = Any
Command = tuple[str, ...]


@dataclass(frozen=True, slots=True)
class StrategyResult:
    """Outcome of one step in a fallback chain."""

    ok: bool
    value: Any = None
    reason: str | None = None

    @classmethod
    def success(cls, value: Any) -> StrategyResult:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: str) -> StrategyResult:
        return cls(ok=False, reason=reason)


def decode(raw: Any, key_type: KeyType | str) -> NormalizedValue:
    """Normalize a raw store reply for ``key_type``."""

    key_type = KeyType.parse(key_type)
    if key_type is KeyType.STRING:
        return raw
    elif key_type is KeyType.HASH:
        return _decode_hash(raw)
    elif key_type is KeyType.LIST:
        return [str(item) for item in raw or ()]
    elif key_type is KeyType.SET:
        return {str(item) for item in raw or ()}
    elif key_type is KeyType.ZSET:
        return _pair_scores(raw or ())
    elif key_type is KeyType.JSON:
        return _parse_json_text(raw).value
    elif key_type is KeyType.NONE:
        raise NotFoundError("Key does not exist.")
    else:
        assert_never(key_type)


def encode(key: str, value: NormalizedValue, key_type: KeyType | str) -> list[Command]:
    """Build the commands that write ``value`` at ``key``.

    Composite types yield at most one command; empty input yields none so the
    key stays absent after the preceding delete.
    """

    key_type = KeyType.parse(key_type)
    if key_type is KeyType.STRING:
        if value is None:
            raise InvalidRequestError("A string value is required.")
        return [("SET", key, _scalar(value))]
    elif key_type is KeyType.HASH:
        if not isinstance(value, Mapping):
            raise InvalidRequestError("Hash values must be a mapping of field to value.")
        pairs: list[str] = []
        for field_name, field_value in value.items():
            pairs.extend((str(field_name), _scalar(field_value)))
        return [("HSET", key, *pairs)] if pairs else []
    elif key_type is KeyType.LIST:
        items = _sequence(value, "List")
        return [("RPUSH", key, *items)] if items else []
    elif key_type is KeyType.SET:
        items = _sequence(value, "Set")
        return [("SADD", key, *items)] if items else []
    elif key_type is KeyType.ZSET:
        args = _zadd_args(value)
        return [("ZADD", key, *args)] if args else []
    elif key_type is KeyType.JSON:
        return [("SET", key, json.dumps(value))]
    elif key_type is KeyType.NONE:
        raise UnsupportedTypeError("Cannot write a value of type 'none'.")
    else:
        assert_never(key_type)


async def detect_type(target: CommandTarget, key: str) -> KeyType:
    """Ask the store for the type of ``key``."""

    tag = await target.call("TYPE", key)
    return KeyType.parse(tag)


async def read_value(target: CommandTarget, key: str, key_type: KeyType | str | None = None) -> NormalizedValue:
    """Fetch and normalize the value stored at ``key``."""

    resolved = await detect_type(target, key) if key_type is None else KeyType.parse(key_type)
    if resolved is KeyType.JSON:
        return await _read_json(target, key)
    raw = await _fetch_raw(target, key, resolved)
    return decode(raw, resolved)


async def write_value(target: CommandTarget, key: str, value: NormalizedValue, key_type: KeyType | str) -> bool:
    """Store ``value`` at ``key`` as ``key_type``.

    Composite values replace the key in full: the key is deleted, then the new
    content is written in one MULTI/EXEC batch. The delete is not part of the
    batch, so a failed batch leaves the key absent.
    """

    resolved = KeyType.parse(key_type)
    if resolved is KeyType.JSON:
        await _write_json(target, key, value)
        return True
    commands = encode(key, value, resolved)
    if resolved.is_composite:
        await target.call("DEL", key)
        if commands:
            await target.batch(commands)
        return True
    for command in commands:
        await target.call(*command)
    return True


async def delete_value(target: CommandTarget, key: str) -> bool:
    await target.call("DEL", key)
    return True


async def _fetch_raw(target: CommandTarget, key: str, key_type: KeyType) -> Any:
    if key_type is KeyType.STRING:
        return await target.call("GET", key)
    elif key_type is KeyType.HASH:
        return await target.call("HGETALL", key)
    elif key_type is KeyType.LIST:
        return await target.call("LRANGE", key, "0", "-1")
    elif key_type is KeyType.SET:
        return await target.call("SMEMBERS", key)
    elif key_type is KeyType.ZSET:
        return await target.call("ZRANGE", key, "0", "-1", "WITHSCORES")
    elif key_type is KeyType.JSON:
        return await target.call("GET", key)
    elif key_type is KeyType.NONE:
        raise NotFoundError(f"Key {key} does not exist.")
    else:
        assert_never(key_type)


class _StringCache:
    """Memoizes ``GET`` so consecutive fallbacks read the key once."""

    _UNSET = object()

    def __init__(self, target: CommandTarget, key: str) -> None:
        self._target = target
        self._key = key
        self._text: Any = self._UNSET

    async def text(self) -> Any:
        if self._text is self._UNSET:
            self._text = await self._target.call("GET", self._key)
        return self._text


JsonReadStrategy = Callable[[CommandTarget, str, _StringCache], Awaitable[StrategyResult]]


async def _json_module_read(target: CommandTarget, key: str, cache: _StringCache) -> StrategyResult:
    try:
        text = await target.call("JSON.GET", key)
    except ConnectionLostError:
        raise
    except UpstreamError as exc:
        return StrategyResult.failure(f"JSON.GET unavailable: {exc}")
    if text is None:
        return StrategyResult.failure("JSON.GET returned nil")
    return _parse_json_text(text)


async def _string_json_read(target: CommandTarget, key: str, cache: _StringCache) -> StrategyResult:
    text = await cache.text()
    if text is None:
        return StrategyResult.failure("GET returned nil")
    return _parse_json_text(text)


async def _raw_string_read(target: CommandTarget, key: str, cache: _StringCache) -> StrategyResult:
    return StrategyResult.success(await cache.text())


JSON_READ_STRATEGIES: tuple[JsonReadStrategy, ...] = (
    _json_module_read,
    _string_json_read,
    _raw_string_read,
)


async def _read_json(
    target: CommandTarget,
    key: str,
    strategies: Sequence[JsonReadStrategy] = JSON_READ_STRATEGIES,
) -> NormalizedValue:
    cache = _StringCache(target, key)
    reasons: list[str] = []
    for index, strategy in enumerate(strategies):
        result = await strategy(target, key, cache)
        if result.ok:
            if index:
                _warn_fallback(f"JSON read for key {key} degraded ({'; '.join(reasons)})")
            return result.value
        reasons.append(result.reason or strategy.__name__)
    return None


async def _write_json(target: CommandTarget, key: str, value: NormalizedValue) -> None:
    payload = json.dumps(value)
    try:
        await target.call("JSON.SET", key, "$", payload)
        return
    except ConnectionLostError:
        raise
    except UpstreamError as exc:
        _warn_fallback(f"JSON.SET unavailable for key {key}, storing as string ({exc})")
    await target.call("SET", key, payload)


def _warn_fallback(message: str) -> None:
    LOG.debug(message)
    warnings.warn(DecodeFallbackWarning(message), stacklevel=3)


def _parse_json_text(text: Any) -> StrategyResult:
    if not isinstance(text, (str, bytes, bytearray)):
        return StrategyResult.success(text)
    try:
        return StrategyResult.success(json.loads(text))
    except ValueError as exc:
        return StrategyResult(ok=False, value=text, reason=f"not JSON text: {exc}")


def _decode_hash(raw: Any) -> dict[str, str]:
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return {str(name): str(value) for name, value in raw.items()}
    flat = list(raw)
    return {str(flat[i]): str(flat[i + 1]) for i in range(0, len(flat) - 1, 2)}


def _pair_scores(raw: Iterable[Any]) -> list[ZSetMember]:
    flat = list(raw)
    if flat and isinstance(flat[0], (tuple, list)):
        return [ZSetMember(member=str(member), score=float(score)) for member, score in flat]
    return [
        ZSetMember(member=str(flat[i]), score=float(flat[i + 1]))
        for i in range(0, len(flat) - 1, 2)
    ]


def _zadd_args(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        raise InvalidRequestError("Sorted set values must be a list of {member, score} entries.")
    args: list[str] = []
    for item in value:
        if isinstance(item, ZSetMember):
            member, score = item.member, item.score
        elif isinstance(item, Mapping):
            member, score = item.get("member"), item.get("score")
        else:
            continue
        if member in (None, "") or score is None:
            continue
        try:
            score_text = repr(float(score))
        except (TypeError, ValueError):
            raise InvalidRequestError(f"Score for member {member!r} is not a number.") from None
        args.extend((score_text, str(member)))
    return args


def _sequence(value: Any, label: str) -> list[str]:
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
        raise InvalidRequestError(f"{label} values must be a list.")
    return [_scalar(item) for item in value]


def _scalar(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


__all__ = [
    "JSON_READ_STRATEGIES",
    "StrategyResult",
    "decode",
    "delete_value",
    "detect_type",
    "encode",
    "read_value",
    "write_value",
]
