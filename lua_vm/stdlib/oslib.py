from __future__ import annotations

import os
import pathlib
import subprocess
import tempfile
import time
from typing import Any, Sequence

from ..table import LuaTable
from ..values import BuiltinFunction, LuaMultiReturn, is_truthy, to_integer
from .helpers import arg, check_number, check_string, check_table, opt_string, register_library


def _failure(exc: OSError, filename: str) -> LuaMultiReturn:
    return LuaMultiReturn([None, f"{filename}: {exc.strerror}", exc.errno])


def _os_clock(args: Sequence[Any], vm: Any) -> float:  # noqa: ANN401
    return time.process_time()


def _date_field(table: LuaTable, key: str, default: Any) -> int:
    value = table.raw_get(key)
    if value is None:
        if default is None:
            raise RuntimeError(f"field '{key}' missing in date table")
        return default
    integer = to_integer(value)
    if integer is None:
        raise RuntimeError(f"field '{key}' is not an integer")
    return integer


def _os_time(args: Sequence[Any], vm: Any) -> int:  # noqa: ANN401
    if arg(args, 1) is None:
        return int(time.time())
    table = check_table(args, 1, "time", vm)
    year = _date_field(table, "year", None)
    month = _date_field(table, "month", None)
    day = _date_field(table, "day", None)
    hour = _date_field(table, "hour", 12)
    minute = _date_field(table, "min", 0)
    second = _date_field(table, "sec", 0)
    isdst_value = table.raw_get("isdst")
    isdst = -1 if isdst_value is None else (1 if is_truthy(isdst_value) else 0)
    tm_tuple = (year, month, day, hour, minute, second, 0, 0, isdst)
    return int(time.mktime(tm_tuple))


def _os_date(args: Sequence[Any], vm: Any):  # noqa: ANN401
    format_string = opt_string(args, 1, "date", "%c")
    timestamp = float(check_number(args, 2, "date", vm)) if arg(args, 2) is not None else time.time()
    use_utc = format_string.startswith("!")
    if use_utc:
        format_string = format_string[1:]
    struct = time.gmtime(timestamp) if use_utc else time.localtime(timestamp)
    if format_string.startswith("*t"):
        table = LuaTable()
        table.raw_set("year", struct.tm_year)
        table.raw_set("month", struct.tm_mon)
        table.raw_set("day", struct.tm_mday)
        table.raw_set("hour", struct.tm_hour)
        table.raw_set("min", struct.tm_min)
        table.raw_set("sec", struct.tm_sec)
        table.raw_set("wday", (struct.tm_wday + 1) % 7 + 1)
        table.raw_set("yday", struct.tm_yday)
        table.raw_set("isdst", struct.tm_isdst > 0)
        return table
    try:
        return time.strftime(format_string, struct)
    except ValueError as exc:
        raise RuntimeError(f"bad argument #1 to 'date' ({exc})") from exc


def _os_difftime(args: Sequence[Any], vm: Any) -> float:  # noqa: ANN401
    later = check_number(args, 1, "difftime", vm)
    earlier = check_number(args, 2, "difftime", vm) if arg(args, 2) is not None else 0
    return float(later - earlier)


def _os_remove(args: Sequence[Any], vm: Any):  # noqa: ANN401
    filename = check_string(args, 1, "remove", vm)
    path = pathlib.Path(filename)
    try:
        if path.is_dir():
            path.rmdir()
        else:
            path.unlink()
    except OSError as exc:
        return _failure(exc, filename)
    return True


def _os_rename(args: Sequence[Any], vm: Any):  # noqa: ANN401
    source = check_string(args, 1, "rename", vm)
    target = check_string(args, 2, "rename", vm)
    try:
        pathlib.Path(source).replace(target)
    except OSError as exc:
        return _failure(exc, source)
    return True


def _os_getenv(args: Sequence[Any], vm: Any):  # noqa: ANN401
    return os.environ.get(check_string(args, 1, "getenv", vm))


def _os_tmpname(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    handle, name = tempfile.mkstemp(prefix="lua_")
    os.close(handle)
    return name


def _os_execute(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    command = opt_string(args, 1, "execute", None)
    if not command:
        return LuaMultiReturn([True])
    result = subprocess.run(command, shell=True, check=False)
    code = result.returncode
    if code < 0:
        return LuaMultiReturn([None, "signal", -code])
    return LuaMultiReturn([True if code == 0 else None, "exit", code])


def open_os(vm: Any) -> LuaTable:  # noqa: ANN401
    members = {
        "clock": BuiltinFunction("os.clock", _os_clock),
        "date": BuiltinFunction("os.date", _os_date),
        "difftime": BuiltinFunction("os.difftime", _os_difftime),
        "execute": BuiltinFunction("os.execute", _os_execute),
        "getenv": BuiltinFunction("os.getenv", _os_getenv),
        "remove": BuiltinFunction("os.remove", _os_remove),
        "rename": BuiltinFunction("os.rename", _os_rename),
        "time": BuiltinFunction("os.time", _os_time),
        "tmpname": BuiltinFunction("os.tmpname", _os_tmpname),
    }
    return register_library(vm, "os", members)


__all__ = ["open_os"]
