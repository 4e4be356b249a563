from __future__ import annotations

import gc
import logging
import sys
from typing import Any, List, Sequence

from ..errors import LuaRuntimeError, LuaSyntaxError
from ..table import LuaTable
from ..values import (
    BuiltinFunction,
    LuaMultiReturn,
    is_callable_value,
    is_truthy,
    lua_type_name,
    raw_equal,
    str_to_number,
    to_number,
)
from .helpers import (
    arg,
    arg_error,
    check_any,
    check_integer,
    check_table,
    loaded_table,
    type_error,
)
from .tablelib import unpack_values

logger = logging.getLogger(__name__)

LUA_VERSION = "Lua 5.4"


def write_output(vm: Any, text: str) -> None:
    """Send ``text`` to the VM's output: collected into a list, or written to a stream."""
    target = vm.output if vm.output is not None else sys.stdout
    if isinstance(target, list):
        target.append(text)
    else:
        target.write(text)


def _lua_print(args: Sequence[Any], vm: Any) -> None:
    text = "\t".join(vm.tostring(value) for value in args)
    if isinstance(vm.output, list):
        vm.output.append(text)
    else:
        write_output(vm, text + "\n")


def _lua_type(args: Sequence[Any], vm: Any) -> str:
    return lua_type_name(check_any(args, 1, "type"))


def _lua_tostring(args: Sequence[Any], vm: Any) -> str:
    return vm.tostring(check_any(args, 1, "tostring"))


def _lua_tonumber(args: Sequence[Any], vm: Any) -> Any:
    base = arg(args, 2)
    if base is None:
        value = check_any(args, 1, "tonumber")
        if isinstance(value, str):
            return str_to_number(value)
        return to_number(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else None
    base = check_integer(args, 2, "tonumber", vm)
    value = arg(args, 1)
    if not isinstance(value, str):
        raise type_error(args, 1, "tonumber", "string", vm)
    if not 2 <= base <= 36:
        raise arg_error(2, "tonumber", "base out of range")
    text = value.strip().lower()
    negative = text.startswith("-")
    if negative:
        text = text[1:]
    if not text:
        return None
    result = 0
    for ch in text:
        if ch.isdigit():
            digit = ord(ch) - ord("0")
        elif "a" <= ch <= "z":
            digit = ord(ch) - ord("a") + 10
        else:
            return None
        if digit >= base:
            return None
        result = result * base + digit
    return -result if negative else result


def _lua_error(args: Sequence[Any], vm: Any) -> None:
    value = arg(args, 1)
    level = arg(args, 2)
    level = 1 if level is None else check_integer(args, 2, "error", vm)
    if isinstance(value, str) and level > 0:
        value = vm.where(level) + value
    raise LuaRuntimeError(value, vm.capture_traceback())


def _lua_assert(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    check_any(args, 1, "assert")
    if is_truthy(args[0]):
        return LuaMultiReturn(list(args))
    if len(args) < 2:
        raise RuntimeError("assertion failed!")
    raise LuaRuntimeError(args[1], vm.capture_traceback())


def _lua_pcall(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    func = check_any(args, 1, "pcall")
    try:
        results = vm.call_value(func, list(args[1:]))
    except LuaRuntimeError as exc:
        return LuaMultiReturn([False, exc.value])
    return LuaMultiReturn([True, *results])


def _lua_xpcall(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    func = arg(args, 1)
    handler = arg(args, 2)
    if not is_callable_value(handler):
        raise type_error(args, 2, "xpcall", "function", vm)
    try:
        results = vm.call_value(func, list(args[2:]))
    except LuaRuntimeError as exc:
        return LuaMultiReturn([False, *vm.call(handler, [exc.value])])
    return LuaMultiReturn([True, *results])


def _lua_select(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    selector = arg(args, 1)
    count = len(args) - 1
    if selector == "#":
        return LuaMultiReturn([count])
    index = check_integer(args, 1, "select", vm)
    if index < 0:
        index = count + index
        if index < 0:
            raise arg_error(1, "select", "index out of range")
        return LuaMultiReturn(list(args[1 + index :]))
    if index == 0:
        raise arg_error(1, "select", "index out of range")
    return LuaMultiReturn(list(args[index:]))


def _lua_rawget(args: Sequence[Any], vm: Any) -> Any:
    table = check_table(args, 1, "rawget", vm)
    return table.raw_get(check_any(args, 2, "rawget"))


def _lua_rawset(args: Sequence[Any], vm: Any) -> LuaTable:
    table = check_table(args, 1, "rawset", vm)
    check_any(args, 2, "rawset")
    check_any(args, 3, "rawset")
    table.raw_set(args[1], args[2])
    return table


def _lua_rawequal(args: Sequence[Any], vm: Any) -> bool:
    check_any(args, 1, "rawequal")
    check_any(args, 2, "rawequal")
    return raw_equal(args[0], args[1])


def _lua_rawlen(args: Sequence[Any], vm: Any) -> int:
    value = arg(args, 1)
    if isinstance(value, LuaTable):
        return value.lua_len()
    if isinstance(value, str):
        return len(value)
    raise arg_error(1, "rawlen", "table or string expected")


def _lua_getmetatable(args: Sequence[Any], vm: Any) -> Any:
    metatable = vm.get_metatable(check_any(args, 1, "getmetatable"))
    if metatable is None:
        return None
    protected = metatable.raw_get("__metatable")
    return protected if protected is not None else metatable


def _lua_setmetatable(args: Sequence[Any], vm: Any) -> LuaTable:
    table = check_table(args, 1, "setmetatable", vm)
    metatable = arg(args, 2)
    if metatable is not None and not isinstance(metatable, LuaTable):
        raise type_error(args, 2, "setmetatable", "nil or table", vm)
    current = table.get_metatable()
    if current is not None and current.raw_get("__metatable") is not None:
        raise RuntimeError("cannot change a protected metatable")
    table.set_metatable(metatable)
    return table


def _lua_next(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    table = check_table(args, 1, "next", vm)
    item = table.next_item(arg(args, 2))
    if item is None:
        return LuaMultiReturn([None])
    return LuaMultiReturn(list(item))


_NEXT = BuiltinFunction("next", _lua_next)


def _lua_pairs(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    value = check_any(args, 1, "pairs")
    handler = vm.get_metamethod(value, "__pairs")
    if handler is not None:
        results = vm.call(handler, [value])
        results = (results + [None, None, None])[:3]
        return LuaMultiReturn(results)
    if not isinstance(value, LuaTable):
        raise type_error(args, 1, "pairs", "table", vm)
    return LuaMultiReturn([_NEXT, value, None])


def _ipairs_step(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    index = check_integer(args, 2, "ipairs", vm) + 1
    value = vm.index(args[0], index)
    if value is None:
        return LuaMultiReturn([None])
    return LuaMultiReturn([index, value])


_IPAIRS_STEP = BuiltinFunction("ipairs_iterator", _ipairs_step)


def _lua_ipairs(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    value = check_any(args, 1, "ipairs")
    return LuaMultiReturn([_IPAIRS_STEP, value, 0])


def _lua_unpack(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    return LuaMultiReturn(unpack_values(args, vm, "unpack"))


def _read_chunk(args: Sequence[Any], vm: Any) -> str:
    source = arg(args, 1)
    if isinstance(source, str):
        return source
    if not is_callable_value(source):
        raise type_error(args, 1, "load", "string", vm)
    pieces: List[str] = []
    while True:
        piece = vm.call_first(source, [])
        if piece is None or piece == "":
            return "".join(pieces)
        if not isinstance(piece, str):
            raise RuntimeError("reader function must return a string")
        pieces.append(piece)


def _lua_load(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    if arg(args, 4) is not None:
        raise arg_error(4, "load", "custom environments are not supported")
    mode = arg(args, 3)
    if mode is not None and "t" not in str(mode):
        return LuaMultiReturn([None, "attempt to load a text chunk (mode is '" + str(mode) + "')"])
    source = _read_chunk(args, vm)
    chunkname = arg(args, 2)
    if chunkname is None:
        chunkname = source if isinstance(arg(args, 1), str) else "=(load)"
    try:
        function = vm.load(source, str(chunkname))
    except LuaSyntaxError as exc:
        return LuaMultiReturn([None, str(exc)])
    return LuaMultiReturn([function])


def _lua_collectgarbage(args: Sequence[Any], vm: Any) -> Any:
    option = arg(args, 1)
    option = "collect" if option is None else option
    if option == "collect":
        gc.collect()
        return 0
    if option == "count":
        return float(len(gc.get_objects())) / 16.0
    if option in ("step", "isrunning"):
        return True
    if option in ("incremental", "generational"):
        return "incremental"
    if option in ("stop", "restart", "setpause", "setstepmul"):
        return 0
    raise arg_error(1, "collectgarbage", f"invalid option '{option}'")


def open_base(vm: Any) -> LuaTable:  # noqa: ANN401
    members = {
        "assert": BuiltinFunction("assert", _lua_assert),
        "collectgarbage": BuiltinFunction("collectgarbage", _lua_collectgarbage),
        "error": BuiltinFunction("error", _lua_error),
        "getmetatable": BuiltinFunction("getmetatable", _lua_getmetatable),
        "ipairs": BuiltinFunction("ipairs", _lua_ipairs),
        "load": BuiltinFunction("load", _lua_load),
        "next": _NEXT,
        "pairs": BuiltinFunction("pairs", _lua_pairs),
        "pcall": BuiltinFunction("pcall", _lua_pcall),
        "print": BuiltinFunction("print", _lua_print),
        "rawequal": BuiltinFunction("rawequal", _lua_rawequal),
        "rawget": BuiltinFunction("rawget", _lua_rawget),
        "rawlen": BuiltinFunction("rawlen", _lua_rawlen),
        "rawset": BuiltinFunction("rawset", _lua_rawset),
        "select": BuiltinFunction("select", _lua_select),
        "setmetatable": BuiltinFunction("setmetatable", _lua_setmetatable),
        "tonumber": BuiltinFunction("tonumber", _lua_tonumber),
        "tostring": BuiltinFunction("tostring", _lua_tostring),
        "type": BuiltinFunction("type", _lua_type),
        "unpack": BuiltinFunction("unpack", _lua_unpack),
        "xpcall": BuiltinFunction("xpcall", _lua_xpcall),
    }
    globals_table = vm.globals
    for name, value in members.items():
        globals_table.raw_set(name, value)
    globals_table.raw_set("_G", globals_table)
    globals_table.raw_set("_VERSION", LUA_VERSION)
    loaded_table(vm).raw_set("_G", globals_table)
    logger.debug("opened base library")
    return globals_table


__all__ = ["LUA_VERSION", "open_base", "write_output"]
