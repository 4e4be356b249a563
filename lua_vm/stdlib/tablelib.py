from __future__ import annotations

import functools
from typing import Any, List, Sequence

from ..table import LuaTable
from ..values import BuiltinFunction, LuaMultiReturn, is_callable_value, is_truthy, number_to_string
from .helpers import (
    arg,
    arg_error,
    check_integer,
    check_table,
    opt_integer,
    opt_string,
    register_library,
    type_error,
)

MAX_UNPACK = 1_000_000


def unpack_values(args: Sequence[Any], vm: Any, fname: str = "unpack") -> List[Any]:
    table = arg(args, 1)
    start = opt_integer(args, 2, fname, 1)
    if arg(args, 3) is None:
        end = vm.length(table)
    else:
        end = check_integer(args, 3, fname, vm)
    if start > end:
        return []
    if end - start >= MAX_UNPACK:
        raise RuntimeError("too many results to unpack")
    return [vm.index(table, index) for index in range(start, end + 1)]


def _table_insert(args: Sequence[Any], vm: Any) -> None:
    table = check_table(args, 1, "insert", vm)
    size = vm.length(table) + 1
    if len(args) == 2:
        vm.set_index(table, size, args[1])
        return None
    if len(args) != 3:
        raise RuntimeError("wrong number of arguments to 'insert'")
    position = check_integer(args, 2, "insert", vm)
    if not 1 <= position <= size:
        raise arg_error(2, "insert", "position out of bounds")
    for index in range(size, position, -1):
        vm.set_index(table, index, vm.index(table, index - 1))
    vm.set_index(table, position, args[2])
    return None


def _table_remove(args: Sequence[Any], vm: Any) -> Any:
    table = check_table(args, 1, "remove", vm)
    size = vm.length(table)
    position = opt_integer(args, 2, "remove", size)
    if position != size and not 1 <= position <= size + 1:
        raise arg_error(2, "remove", "position out of bounds")
    value = vm.index(table, position)
    while position < size:
        vm.set_index(table, position, vm.index(table, position + 1))
        position += 1
    vm.set_index(table, position, None)
    return value


def _table_concat(args: Sequence[Any], vm: Any) -> str:
    table = check_table(args, 1, "concat", vm)
    separator = opt_string(args, 2, "concat", "")
    start = opt_integer(args, 3, "concat", 1)
    end = check_integer(args, 4, "concat", vm) if arg(args, 4) is not None else vm.length(table)
    pieces: List[str] = []
    for index in range(start, end + 1):
        value = vm.index(table, index)
        if isinstance(value, str):
            pieces.append(value)
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            pieces.append(number_to_string(value))
        else:
            raise RuntimeError(
                f"invalid value (at index {index}) in table for 'concat'"
            )
    return separator.join(pieces)


def _table_pack(args: Sequence[Any], vm: Any) -> LuaTable:
    table = LuaTable(list(args))
    table.raw_set("n", len(args))
    return table


def _table_unpack(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    return LuaMultiReturn(unpack_values(args, vm, "unpack"))


def _table_move(args: Sequence[Any], vm: Any) -> LuaTable:
    source = check_table(args, 1, "move", vm)
    first = check_integer(args, 2, "move", vm)
    last = check_integer(args, 3, "move", vm)
    target_pos = check_integer(args, 4, "move", vm)
    target = arg(args, 5)
    if target is None:
        target = source
    elif not isinstance(target, LuaTable):
        raise type_error(args, 5, "move", "table", vm)
    if last >= first:
        overlapping = target is source and first < target_pos <= last
        offsets = range(last - first, -1, -1) if overlapping else range(0, last - first + 1)
        for offset in offsets:
            vm.set_index(target, target_pos + offset, vm.index(source, first + offset))
    return target


def _table_sort(args: Sequence[Any], vm: Any) -> None:
    table = check_table(args, 1, "sort", vm)
    comparator = arg(args, 2)
    if comparator is not None and not is_callable_value(comparator):
        raise type_error(args, 2, "sort", "function", vm)
    size = vm.length(table)
    values = [vm.index(table, index) for index in range(1, size + 1)]

    if comparator is None:
        def less(a: Any, b: Any) -> bool:
            return vm.less_than(a, b)
    else:
        def less(a: Any, b: Any) -> bool:
            return is_truthy(vm.call_first(comparator, [a, b]))

    def compare(a: Any, b: Any) -> int:
        if less(a, b):
            return -1
        if less(b, a):
            return 1
        return 0

    values.sort(key=functools.cmp_to_key(compare))
    for index, value in enumerate(values, start=1):
        vm.set_index(table, index, value)
    return None


def open_table(vm: Any) -> LuaTable:  # noqa: ANN401
    members = {
        "concat": BuiltinFunction("table.concat", _table_concat),
        "insert": BuiltinFunction("table.insert", _table_insert),
        "move": BuiltinFunction("table.move", _table_move),
        "pack": BuiltinFunction("table.pack", _table_pack),
        "remove": BuiltinFunction("table.remove", _table_remove),
        "sort": BuiltinFunction("table.sort", _table_sort),
        "unpack": BuiltinFunction("table.unpack", _table_unpack),
    }
    return register_library(vm, "table", members)


__all__ = ["open_table", "unpack_values"]
