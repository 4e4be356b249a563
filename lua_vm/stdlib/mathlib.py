from __future__ import annotations

import math
import random
from typing import Any, Sequence

from ..table import LuaTable
from ..values import BuiltinFunction, LuaMultiReturn, float_to_integer, to_number, wrap_integer
from .helpers import arg, arg_error, check_any, check_integer, check_number, register_library

MAX_INTEGER = (1 << 63) - 1
MIN_INTEGER = -(1 << 63)


def _as_integer_if_fits(value: float) -> Any:
    integer = float_to_integer(value)
    return integer if integer is not None else value


def _math_abs(args: Sequence[Any], vm: Any) -> Any:
    value = check_number(args, 1, "abs", vm)
    if isinstance(value, int):
        return wrap_integer(abs(value))
    return abs(value)


def _math_floor(args: Sequence[Any], vm: Any) -> Any:
    value = check_number(args, 1, "floor", vm)
    if isinstance(value, int):
        return value
    if math.isinf(value) or math.isnan(value):
        return value
    return _as_integer_if_fits(float(math.floor(value)))


def _math_ceil(args: Sequence[Any], vm: Any) -> Any:
    value = check_number(args, 1, "ceil", vm)
    if isinstance(value, int):
        return value
    if math.isinf(value) or math.isnan(value):
        return value
    return _as_integer_if_fits(float(math.ceil(value)))


def _math_fmod(args: Sequence[Any], vm: Any) -> Any:
    a = check_number(args, 1, "fmod", vm)
    b = check_number(args, 2, "fmod", vm)
    if isinstance(a, int) and isinstance(b, int):
        if b == 0:
            raise arg_error(2, "fmod", "zero")
        remainder = abs(a) % abs(b)
        return -remainder if a < 0 else remainder
    return math.fmod(float(a), float(b)) if b != 0 else math.nan


def _math_modf(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    value = check_number(args, 1, "modf", vm)
    if isinstance(value, int):
        return LuaMultiReturn([value, 0.0])
    if math.isinf(value):
        return LuaMultiReturn([value, 0.0])
    integral = float(math.ceil(value) if value < 0 else math.floor(value))
    return LuaMultiReturn([integral, value - integral])


def _math_sqrt(args: Sequence[Any], vm: Any) -> float:
    value = float(check_number(args, 1, "sqrt", vm))
    return math.sqrt(value) if value >= 0 else math.nan


def _math_exp(args: Sequence[Any], vm: Any) -> float:
    try:
        return math.exp(check_number(args, 1, "exp", vm))
    except OverflowError:
        return math.inf


def _math_log(args: Sequence[Any], vm: Any) -> float:
    value = float(check_number(args, 1, "log", vm))
    base = arg(args, 2)
    if value == 0:
        return -math.inf
    if value < 0:
        return math.nan
    if base is None:
        return math.log(value)
    base = float(check_number(args, 2, "log", vm))
    if base == 2:
        return math.log2(value)
    if base == 10:
        return math.log10(value)
    return math.log(value) / math.log(base)


def _unary(fname: str, func):
    def wrapper(args: Sequence[Any], vm: Any) -> float:
        value = float(check_number(args, 1, fname, vm))
        try:
            return func(value)
        except ValueError:
            return math.nan

    return wrapper


def _math_atan(args: Sequence[Any], vm: Any) -> float:
    y = float(check_number(args, 1, "atan", vm))
    x = float(check_number(args, 2, "atan", vm)) if arg(args, 2) is not None else 1.0
    return math.atan2(y, x)


def _extreme(fname: str, pick_first):
    def wrapper(args: Sequence[Any], vm: Any) -> Any:
        best = check_number(args, 1, fname, vm)
        for position in range(2, len(args) + 1):
            value = check_number(args, position, fname, vm)
            if pick_first(vm, value, best):
                best = value
        return best

    return wrapper


def _math_tointeger(args: Sequence[Any], vm: Any) -> Any:
    value = check_any(args, 1, "tointeger")
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    number = to_number(value) if not isinstance(value, str) else None
    if number is None:
        return None
    return float_to_integer(number)


def _math_type(args: Sequence[Any], vm: Any) -> Any:
    value = check_any(args, 1, "type")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return "integer" if isinstance(value, int) else "float"


def _math_ult(args: Sequence[Any], vm: Any) -> bool:
    a = check_integer(args, 1, "ult", vm) & 0xFFFFFFFFFFFFFFFF
    b = check_integer(args, 2, "ult", vm) & 0xFFFFFFFFFFFFFFFF
    return a < b


def _make_random(rng: random.Random):
    def _math_random(args: Sequence[Any], vm: Any) -> Any:
        if not args:
            return rng.random()
        low = check_integer(args, 1, "random", vm)
        if len(args) == 1:
            low, high = 1, low
        else:
            high = check_integer(args, 2, "random", vm)
        if low > high:
            raise arg_error(len(args), "random", "interval is empty")
        return rng.randint(low, high)

    def _math_randomseed(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
        seed = check_number(args, 1, "randomseed", vm) if args else random.getrandbits(63)
        rng.seed(seed)
        return LuaMultiReturn([seed])

    return _math_random, _math_randomseed


def open_math(vm: Any) -> LuaTable:  # noqa: ANN401
    rng = random.Random()
    lua_random, lua_randomseed = _make_random(rng)
    members = {
        "abs": BuiltinFunction("math.abs", _math_abs),
        "acos": BuiltinFunction("math.acos", _unary("acos", math.acos)),
        "asin": BuiltinFunction("math.asin", _unary("asin", math.asin)),
        "atan": BuiltinFunction("math.atan", _math_atan),
        "ceil": BuiltinFunction("math.ceil", _math_ceil),
        "cos": BuiltinFunction("math.cos", _unary("cos", math.cos)),
        "deg": BuiltinFunction("math.deg", _unary("deg", math.degrees)),
        "exp": BuiltinFunction("math.exp", _math_exp),
        "floor": BuiltinFunction("math.floor", _math_floor),
        "fmod": BuiltinFunction("math.fmod", _math_fmod),
        "huge": math.inf,
        "log": BuiltinFunction("math.log", _math_log),
        "max": BuiltinFunction("math.max", _extreme("max", lambda vm, a, b: vm.less_than(b, a))),
        "maxinteger": MAX_INTEGER,
        "min": BuiltinFunction("math.min", _extreme("min", lambda vm, a, b: vm.less_than(a, b))),
        "mininteger": MIN_INTEGER,
        "modf": BuiltinFunction("math.modf", _math_modf),
        "pi": math.pi,
        "rad": BuiltinFunction("math.rad", _unary("rad", math.radians)),
        "random": BuiltinFunction("math.random", lua_random),
        "randomseed": BuiltinFunction("math.randomseed", lua_randomseed),
        "sin": BuiltinFunction("math.sin", _unary("sin", math.sin)),
        "sqrt": BuiltinFunction("math.sqrt", _math_sqrt),
        "tan": BuiltinFunction("math.tan", _unary("tan", math.tan)),
        "tointeger": BuiltinFunction("math.tointeger", _math_tointeger),
        "type": BuiltinFunction("math.type", _math_type),
        "ult": BuiltinFunction("math.ult", _math_ult),
    }
    return register_library(vm, "math", members)


__all__ = ["MAX_INTEGER", "MIN_INTEGER", "open_math"]
