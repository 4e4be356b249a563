from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence

from .values import lua_type_name, number_to_string

# Mirrors LUA_IDSIZE: the longest chunk id that appears in messages.
_ID_SIZE = 60


@dataclass(frozen=True)
class TraceFrame:
    """Represents a single frame in a Lua-style traceback."""

    function_name: str
    file: str
    line: int
    column: int
    pc: int


def chunk_id(source_name: str) -> str:
    """Return the display name Lua would use for a chunk named ``source_name``.

    ``=name`` is used verbatim, ``@path`` is a file name, anything else is
    treated as the source text itself and rendered as ``[string "..."]``.
    """
    if source_name.startswith("="):
        return source_name[1:_ID_SIZE]
    if source_name.startswith("@"):
        name = source_name[1:]
        if len(name) <= _ID_SIZE - 1:
            return name
        return "..." + name[-(_ID_SIZE - 4):]
    available = _ID_SIZE - len('[string "') - len('..."]') - 1
    newline = source_name.find("\n")
    if newline < 0 and len(source_name) < available:
        return f'[string "{source_name}"]'
    length = newline if newline >= 0 else len(source_name)
    length = min(length, available)
    return f'[string "{source_name[:length]}..."]'


def format_lua_error(message: str, frame: TraceFrame | None) -> str:
    if frame is None or frame.line <= 0:
        return message
    return f"{frame.file}:{frame.line}: {message}"


def format_traceback(frames: Sequence[TraceFrame]) -> str:
    lines = ["stack traceback:"]
    for frame in frames:
        location = frame.file if frame.line < 0 else f"{frame.file}:{frame.line}"
        lines.append(f"\t{location}: in function '{frame.function_name}'")
    return "\n".join(lines)


def error_message(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return number_to_string(value)
    return f"(error object is a {lua_type_name(value)} value)"


class LuaRuntimeError(RuntimeError):
    """Error raised out of the VM, carrying the Lua error value.

    ``value`` is whatever the script passed to ``error`` (already prefixed with
    its position for string messages) and ``frames`` is the traceback captured
    where the error was raised.
    """

    def __init__(self, value: Any, frames: Optional[Sequence[TraceFrame]] = None):
        self.value = value
        self.frames = list(frames or [])
        super().__init__(error_message(value))

    @property
    def traceback(self) -> str:
        return format_traceback(self.frames)


class LuaSyntaxError(SyntaxError):
    """Raised when a chunk cannot be lexed, parsed or compiled."""


__all__ = [
    "LuaRuntimeError",
    "LuaSyntaxError",
    "TraceFrame",
    "chunk_id",
    "error_message",
    "format_lua_error",
    "format_traceback",
]
