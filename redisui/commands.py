"""Ad-hoc command dispatch for the command pad."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Mapping

from .connections import CommandTarget
from .errors import CommandExecutionError, InvalidRequestError, UpstreamError

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Raw reply plus timing, returned to the console."""

    command: str
    verb: str
    args: tuple[str, ...]
    result: Any
    elapsed_ms: int


def tokenize(command_line: str) -> tuple[str, tuple[str, ...]]:
    """Split a command line into a lower-cased verb and opaque arguments."""

    parts = command_line.split()
    if not parts:
        raise InvalidRequestError("Enter a command to execute.")
    return parts[0].lower(), tuple(parts[1:])


async def execute(target: CommandTarget, command_line: str) -> Any:
    """Forward the command verbatim and return the reply unmodified."""

    verb, args = tokenize(command_line)
    LOG.info("Executing command", extra={"verb": verb, "argc": len(args)})
    try:
        return await target.call(verb, *args)
    except UpstreamError as exc:
        raise CommandExecutionError(exc.message) from exc


async def run_command(target: CommandTarget, command_line: str) -> CommandResult:
    verb, args = tokenize(command_line)
    started = time.perf_counter()
    result = await execute(target, command_line)
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    return CommandResult(
        command=command_line.strip(),
        verb=verb,
        args=args,
        result=result,
        elapsed_ms=elapsed_ms,
    )


def format_result(result: Any, *, indent: int = 0) -> str:
    """Render a reply the way ``redis-cli`` prints it."""

    pad = " " * indent
    if result is None:
        return f"{pad}(nil)"
    if isinstance(result, bool):
        return f"{pad}(integer) {int(result)}"
    if isinstance(result, int):
        return f"{pad}(integer) {result}"
    if isinstance(result, float):
        return f'{pad}"{result!r}"'
    if isinstance(result, str):
        return f"{pad}{result}" if "\n" in result else f'{pad}"{result}"'
    if isinstance(result, Mapping):
        items: list[Any] = []
        for name, value in result.items():
            items.extend((name, value))
        return format_result(items, indent=indent)
    if isinstance(result, (list, tuple, set, frozenset)):
        values = sorted(result, key=str) if isinstance(result, (set, frozenset)) else list(result)
        if not values:
            return f"{pad}(empty array)"
        width = len(str(len(values)))
        lines = []
        for position, value in enumerate(values, start=1):
            label = f"{position:>{width}}) "
            rendered = format_result(value, indent=indent + len(label)).lstrip()
            lines.append(f"{pad}{label}{rendered}")
        return "\n".join(lines)
    return f"{pad}{result}"


__all__ = ["CommandResult", "execute", "format_result", "run_command", "tokenize"]
