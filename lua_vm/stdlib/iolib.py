"""Console subset of the ``io`` library.

Output goes through the VM's ``output`` target (the same one ``print`` uses);
input is read from ``vm.input`` or ``sys.stdin``.
"""

from __future__ import annotations

import sys
from typing import Any, List, Sequence

from ..table import LuaTable
from ..values import BuiltinFunction, LuaMultiReturn, number_to_string, str_to_number
from .base import write_output
from .helpers import arg, arg_error, register_library, type_error

STREAM_MARKER = "__stream"


def _input_stream(vm: Any):  # noqa: ANN401
    return vm.input if vm.input is not None else sys.stdin


def _write_values(values: Sequence[Any], vm: Any, fname: str, offset: int) -> None:
    pieces: List[str] = []
    for position, value in enumerate(values, start=1 + offset):
        if isinstance(value, str):
            pieces.append(value)
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            pieces.append(number_to_string(value))
        else:
            raise type_error(values, position - offset, fname, "string", vm)
    write_output(vm, "".join(pieces))


def _read_number(stream) -> Any:
    text = stream.readline()
    return str_to_number(text.strip()) if text else None


def _read_one(stream, fmt: Any, position: int) -> Any:
    if isinstance(fmt, int):
        data = stream.read(fmt)
        return data if data or fmt == 0 else None
    if not isinstance(fmt, str):
        raise arg_error(position, "read", "invalid format")
    fmt = fmt.lstrip("*")[:1]
    if fmt == "n":
        return _read_number(stream)
    if fmt == "a":
        return stream.read()
    if fmt in ("l", "L"):
        line = stream.readline()
        if not line:
            return None
        return line if fmt == "L" else line.rstrip("\n")
    raise arg_error(position, "read", "invalid format")


def _read_values(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    stream = _input_stream(vm)
    formats = list(args) or ["l"]
    results: List[Any] = []
    for position, fmt in enumerate(formats, start=1):
        value = _read_one(stream, fmt, position)
        results.append(value)
        if value is None:
            break
    return LuaMultiReturn(results)


def _make_stdout() -> LuaTable:
    stdout = LuaTable()

    def _file_write(args: Sequence[Any], vm: Any) -> LuaTable:
        _write_values(list(args[1:]), vm, "write", 1)
        return stdout

    def _file_flush(args: Sequence[Any], vm: Any) -> LuaTable:
        if vm.output is None:
            sys.stdout.flush()
        return stdout

    methods = LuaTable()
    methods.raw_set("write", BuiltinFunction("write", _file_write))
    methods.raw_set("flush", BuiltinFunction("flush", _file_flush))
    metatable = LuaTable()
    metatable.raw_set("__index", methods)
    metatable.raw_set("__name", "FILE*")
    stdout.raw_set(STREAM_MARKER, True)
    stdout.set_metatable(metatable)
    return stdout


def open_io(vm: Any) -> LuaTable:  # noqa: ANN401
    stdout = _make_stdout()

    def _io_write(args: Sequence[Any], vm: Any) -> LuaTable:
        _write_values(args, vm, "write", 0)
        return stdout

    def _io_lines(args: Sequence[Any], vm: Any) -> BuiltinFunction:
        if arg(args, 1) is not None:
            raise arg_error(1, "lines", "reading files is not supported")
        formats = list(args[1:])

        def _next_line(_args: Sequence[Any], vm: Any) -> LuaMultiReturn:
            return _read_values(formats, vm)

        return BuiltinFunction("lines_iterator", _next_line)

    members = {
        "lines": BuiltinFunction("io.lines", _io_lines),
        "read": BuiltinFunction("io.read", _read_values),
        "stdout": stdout,
        "write": BuiltinFunction("io.write", _io_write),
    }
    return register_library(vm, "io", members)


__all__ = ["open_io"]
