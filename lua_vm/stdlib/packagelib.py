"""``package`` and ``require``, resolved through ``package.preload`` only."""

from __future__ import annotations

from typing import Any, Sequence

from ..table import LuaTable
from ..values import BuiltinFunction, LuaMultiReturn, is_callable_value
from .helpers import check_string, loaded_table, preload_table, register_library


def _lua_require(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    name = check_string(args, 1, "require", vm)
    loaded = loaded_table(vm)
    existing = loaded.raw_get(name)
    if existing is not None:
        return LuaMultiReturn([existing])
    loader = preload_table(vm).raw_get(name)
    if not is_callable_value(loader):
        raise RuntimeError(f"module '{name}' not found:\n\tno field package.preload['{name}']")
    result = vm.call_first(loader, [name, ":preload:"])
    if result is not None:
        loaded.raw_set(name, result)
    if loaded.raw_get(name) is None:
        loaded.raw_set(name, True)
    return LuaMultiReturn([loaded.raw_get(name), ":preload:"])


def open_package(vm: Any) -> LuaTable:  # noqa: ANN401
    members = {
        "config": "/\n;\n?\n!\n-\n",
        "loaded": loaded_table(vm),
        "path": "",
        "cpath": "",
        "preload": preload_table(vm),
    }
    library = register_library(vm, "package", members)
    vm.globals.raw_set("require", BuiltinFunction("require", _lua_require))
    return library


__all__ = ["open_package"]
