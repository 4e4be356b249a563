from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence

from ..table import LuaTable
from ..values import (
    LightUserdata,
    LuaUserdata,
    float_to_integer,
    lua_type_name,
    number_to_string,
    to_number,
)

logger = logging.getLogger(__name__)

LOADED_KEY = "_LOADED"
PRELOAD_KEY = "_PRELOAD"


def arg_error(position: int, fname: str, message: str) -> RuntimeError:
    return RuntimeError(f"bad argument #{position} to '{fname}' ({message})")


def typename_for_error(vm: Any, value: Any) -> str:  # noqa: ANN401 - VM is dynamic
    """Type name used in 'X expected, got Y' messages; honours ``__name``."""
    metatable = vm.get_metatable(value) if vm is not None else None
    if metatable is not None:
        name = metatable.raw_get("__name")
        if isinstance(name, str):
            return name
    if isinstance(value, LightUserdata):
        return "light userdata"
    return lua_type_name(value)


def type_error(args: Sequence[Any], position: int, fname: str, expected: str, vm: Any = None) -> RuntimeError:
    if position > len(args):
        got = "no value"
    else:
        got = typename_for_error(vm, args[position - 1])
    return arg_error(position, fname, f"{expected} expected, got {got}")


def arg(args: Sequence[Any], position: int) -> Any:
    return args[position - 1] if position <= len(args) else None


def check_any(args: Sequence[Any], position: int, fname: str) -> Any:
    if position > len(args):
        raise arg_error(position, fname, "value expected")
    return args[position - 1]


def check_table(args: Sequence[Any], position: int, fname: str, vm: Any = None) -> LuaTable:
    value = arg(args, position)
    if isinstance(value, LuaTable):
        return value
    raise type_error(args, position, fname, "table", vm)


def check_number(args: Sequence[Any], position: int, fname: str, vm: Any = None) -> Any:
    number = to_number(arg(args, position))
    if number is None:
        raise type_error(args, position, fname, "number", vm)
    return number


def check_integer(args: Sequence[Any], position: int, fname: str, vm: Any = None) -> int:
    number = check_number(args, position, fname, vm)
    integer = float_to_integer(number)
    if integer is None:
        raise arg_error(position, fname, "number has no integer representation")
    return integer


def check_string(args: Sequence[Any], position: int, fname: str, vm: Any = None) -> str:
    value = arg(args, position)
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return number_to_string(value)
    raise type_error(args, position, fname, "string", vm)


def opt_integer(args: Sequence[Any], position: int, fname: str, default: Optional[int]) -> Optional[int]:
    if arg(args, position) is None:
        return default
    return check_integer(args, position, fname)


def opt_number(args: Sequence[Any], position: int, fname: str, default: Any) -> Any:
    if arg(args, position) is None:
        return default
    return check_number(args, position, fname)


def opt_string(args: Sequence[Any], position: int, fname: str, default: Optional[str]) -> Optional[str]:
    if arg(args, position) is None:
        return default
    return check_string(args, position, fname)


def is_userdata(value: Any) -> bool:
    return isinstance(value, (LuaUserdata, LightUserdata))


def loaded_table(vm: Any) -> LuaTable:  # noqa: ANN401
    loaded = vm.registry.raw_get(LOADED_KEY)
    if not isinstance(loaded, LuaTable):
        loaded = LuaTable()
        vm.registry.raw_set(LOADED_KEY, loaded)
    return loaded


def preload_table(vm: Any) -> LuaTable:  # noqa: ANN401
    preload = vm.registry.raw_get(PRELOAD_KEY)
    if not isinstance(preload, LuaTable):
        preload = LuaTable()
        vm.registry.raw_set(PRELOAD_KEY, preload)
    return preload


def register_library(vm: Any, name: str, members: Mapping[str, Any]) -> LuaTable:  # noqa: ANN401
    """Install ``members`` as global table ``name`` and record it in ``package.loaded``."""
    existing = vm.globals.raw_get(name)
    table = existing if isinstance(existing, LuaTable) else LuaTable()
    for key, value in members.items():
        table.raw_set(key, value)
    vm.globals.raw_set(name, table)
    loaded_table(vm).raw_set(name, table)
    logger.debug("opened library %s (%d members)", name, len(members))
    return table


__all__ = [
    "LOADED_KEY",
    "PRELOAD_KEY",
    "arg",
    "arg_error",
    "check_any",
    "check_integer",
    "check_number",
    "check_string",
    "check_table",
    "is_userdata",
    "loaded_table",
    "opt_integer",
    "opt_number",
    "opt_string",
    "preload_table",
    "register_library",
    "type_error",
    "typename_for_error",
]
