from __future__ import annotations

from typing import Any, Sequence

from ..errors import format_traceback
from ..table import LuaTable
from ..values import BuiltinFunction, LuaFunction, is_callable_value
from .helpers import arg, check_any, check_integer, register_library, type_error


def _debug_traceback(args: Sequence[Any], vm: Any) -> Any:  # noqa: ANN401
    message = arg(args, 1)
    if message is not None and not isinstance(message, (str, int, float)):
        return message
    level = check_integer(args, 2, "traceback", vm) if arg(args, 2) is not None else 1
    frames = vm.capture_traceback()[max(level, 0):]
    trace = format_traceback(frames)
    if message is None:
        return trace
    return f"{vm.tostring(message)}\n{trace}"


def _debug_getinfo(args: Sequence[Any], vm: Any) -> Any:  # noqa: ANN401
    target = check_any(args, 1, "getinfo")
    info = LuaTable()
    if is_callable_value(target):
        info.raw_set("func", target)
        info.raw_set("what", "Lua" if isinstance(target, LuaFunction) else "C")
        info.raw_set("source", "=?" if not isinstance(target, LuaFunction) else target.program.source_name)
        info.raw_set("short_src", "[C]" if not isinstance(target, LuaFunction) else target.program.source_name)
        info.raw_set("currentline", -1)
        return info
    level = check_integer(args, 1, "getinfo", vm)
    frames = vm.capture_traceback()
    if not 0 <= level < len(frames):
        return None
    frame = frames[level]
    info.raw_set("currentline", frame.line)
    info.raw_set("short_src", frame.file)
    info.raw_set("source", frame.file)
    info.raw_set("name", frame.function_name)
    info.raw_set("what", "C" if frame.line < 0 else "Lua")
    return info


def _debug_getmetatable(args: Sequence[Any], vm: Any) -> Any:  # noqa: ANN401
    return vm.get_metatable(check_any(args, 1, "getmetatable"))


def _debug_setmetatable(args: Sequence[Any], vm: Any) -> Any:  # noqa: ANN401
    value = check_any(args, 1, "setmetatable")
    metatable = arg(args, 2)
    if metatable is not None and not isinstance(metatable, LuaTable):
        raise type_error(args, 2, "setmetatable", "nil or table", vm)
    vm.set_metatable(value, metatable)
    return value


def open_debug(vm: Any) -> LuaTable:  # noqa: ANN401
    members = {
        "getinfo": BuiltinFunction("debug.getinfo", _debug_getinfo),
        "getmetatable": BuiltinFunction("debug.getmetatable", _debug_getmetatable),
        "setmetatable": BuiltinFunction("debug.setmetatable", _debug_setmetatable),
        "traceback": BuiltinFunction("debug.traceback", _debug_traceback),
    }
    return register_library(vm, "debug", members)


__all__ = ["open_debug"]
