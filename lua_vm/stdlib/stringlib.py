from __future__ import annotations

from typing import Any, List, Sequence

from ..table import LuaTable
from ..values import (
    BuiltinFunction,
    HostClosure,
    LuaFunction,
    LuaMultiReturn,
    float_to_integer,
    lua_type_name,
    number_to_string,
    to_number,
)
from . import patterns
from .helpers import (
    arg,
    arg_error,
    check_integer,
    check_number,
    check_string,
    opt_integer,
    opt_string,
    register_library,
    type_error,
)

MAX_STRING_SIZE = 1 << 31


def _start_position(pos: int, length: int) -> int:
    if pos > 0:
        return pos
    if pos == 0 or pos < -length:
        return 1
    return length + pos + 1


def _end_position(pos: int, length: int) -> int:
    if pos > length:
        return length
    if pos >= 0:
        return pos
    if pos < -length:
        return 0
    return length + pos + 1


def _pattern_call(func):
    def wrapper(args: Sequence[Any], vm: Any):
        try:
            return func(args, vm)
        except patterns.PatternError as exc:
            raise RuntimeError(str(exc)) from exc

    wrapper.__name__ = func.__name__
    return wrapper


def _string_len(args: Sequence[Any], vm: Any) -> int:
    return len(check_string(args, 1, "len", vm))


def _string_sub(args: Sequence[Any], vm: Any) -> str:
    text = check_string(args, 1, "sub", vm)
    length = len(text)
    start = _start_position(check_integer(args, 2, "sub", vm), length)
    end = _end_position(opt_integer(args, 3, "sub", -1), length)
    if start <= end:
        return text[start - 1 : end]
    return ""


def _string_upper(args: Sequence[Any], vm: Any) -> str:
    return check_string(args, 1, "upper", vm).upper()


def _string_lower(args: Sequence[Any], vm: Any) -> str:
    return check_string(args, 1, "lower", vm).lower()


def _string_reverse(args: Sequence[Any], vm: Any) -> str:
    return check_string(args, 1, "reverse", vm)[::-1]


def _string_rep(args: Sequence[Any], vm: Any) -> str:
    text = check_string(args, 1, "rep", vm)
    count = check_integer(args, 2, "rep", vm)
    separator = opt_string(args, 3, "rep", "")
    if count <= 0:
        return ""
    if (len(text) + len(separator)) * count >= MAX_STRING_SIZE:
        raise RuntimeError("resulting string too large")
    if not separator:
        return text * count
    return separator.join([text] * count)


def _string_byte(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    text = check_string(args, 1, "byte", vm)
    start = _start_position(opt_integer(args, 2, "byte", 1), len(text))
    end = _end_position(opt_integer(args, 3, "byte", start), len(text))
    if start > end:
        return LuaMultiReturn([])
    return LuaMultiReturn([ord(ch) for ch in text[start - 1 : end]])


def _string_char(args: Sequence[Any], vm: Any) -> str:
    chars: List[str] = []
    for position in range(1, len(args) + 1):
        code = check_integer(args, position, "char", vm)
        if not 0 <= code <= 0x10FFFF:
            raise arg_error(position, "char", "value out of range")
        chars.append(chr(code))
    return "".join(chars)


@_pattern_call
def _string_find(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    return _find_aux(args, vm, "find", find=True)


@_pattern_call
def _string_match(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    return _find_aux(args, vm, "match", find=False)


def _find_aux(args: Sequence[Any], vm: Any, fname: str, find: bool) -> LuaMultiReturn:
    text = check_string(args, 1, fname, vm)
    pattern = check_string(args, 2, fname, vm)
    init = _start_position(opt_integer(args, 3, fname, 1), len(text))
    if init > len(text) + 1:
        return LuaMultiReturn([None])
    plain = find and arg(args, 4) not in (None, False)
    result = patterns.find(text, pattern, init - 1, plain, want_captures=not find)
    if result is None:
        return LuaMultiReturn([None])
    return LuaMultiReturn(result)


@_pattern_call
def _string_gmatch(args: Sequence[Any], vm: Any) -> BuiltinFunction:
    text = check_string(args, 1, "gmatch", vm)
    pattern = check_string(args, 2, "gmatch", vm)
    matches = patterns.iterate(text, pattern)

    @_pattern_call
    def _next_match(_args: Sequence[Any], _vm: Any) -> LuaMultiReturn:
        for captures in matches:
            return LuaMultiReturn(captures)
        return LuaMultiReturn([None])

    return BuiltinFunction("gmatch_iterator", _next_match)


@_pattern_call
def _string_gsub(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    text = check_string(args, 1, "gsub", vm)
    pattern = check_string(args, 2, "gsub", vm)
    repl = arg(args, 3)
    if isinstance(repl, (int, float)) and not isinstance(repl, bool):
        repl = number_to_string(repl)
    if not isinstance(repl, (str, LuaTable, LuaFunction, BuiltinFunction, HostClosure)):
        raise type_error(args, 3, "gsub", "string/function/table", vm)
    max_count = opt_integer(args, 4, "gsub", None)

    def replace(state: patterns.MatchState, start: int, end: int):
        if isinstance(repl, str):
            return patterns.expand_replacement(state, repl, start, end, vm.tostring)
        captures = state.get_captures(start, end)
        if isinstance(repl, LuaTable):
            value = vm.index(repl, captures[0])
        else:
            value = vm.call_first(repl, captures)
        if value is None or value is False:
            return None
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return number_to_string(value)
        raise RuntimeError(f"invalid replacement value (a {lua_type_name(value)})")

    result, count = patterns.substitute(text, pattern, max_count, replace)
    return LuaMultiReturn([result, count])


def _format_integer(value: Any, position: int) -> int:
    number = to_number(value)
    if number is None:
        raise arg_error(position, "format", f"number expected, got {lua_type_name(value)}")
    integer = float_to_integer(number)
    if integer is None:
        raise arg_error(position, "format", "number has no integer representation")
    return integer


def _quote(value: Any, position: int) -> str:
    if isinstance(value, str):
        out = ['"']
        for index, ch in enumerate(value):
            if ch in '"\\\n':
                out.append("\\" + ch)
            elif ord(ch) < 32 or ord(ch) == 127:
                nxt = value[index + 1] if index + 1 < len(value) else ""
                out.append(f"\\{ord(ch):03d}" if nxt.isdigit() else f"\\{ord(ch)}")
            else:
                out.append(ch)
        out.append('"')
        return "".join(out)
    if isinstance(value, bool) or value is None:
        return "true" if value is True else ("false" if value is False else "nil")
    if isinstance(value, int):
        return str(value) if value != -(1 << 63) else "0x8000000000000000"
    if isinstance(value, float):
        if value != value:
            return "(0/0)"
        if value in (float("inf"), float("-inf")):
            return "1e9999" if value > 0 else "-1e9999"
        if value == int(value):
            return f"{int(value)}e0" if abs(value) < 1e16 else value.hex()
        return value.hex()
    raise arg_error(position, "format", "value has no literal form")


def _string_format(args: Sequence[Any], vm: Any) -> str:
    template = check_string(args, 1, "format", vm)
    output: List[str] = []
    length = len(template)
    index = 0
    position = 1
    while index < length:
        char = template[index]
        if char != "%":
            output.append(char)
            index += 1
            continue
        index += 1
        if index < length and template[index] == "%":
            output.append("%")
            index += 1
            continue
        spec_start = index
        while index < length and template[index] in "-+ #0":
            index += 1
        while index < length and template[index].isdigit():
            index += 1
        if index < length and template[index] == ".":
            index += 1
            while index < length and template[index].isdigit():
                index += 1
        if index >= length:
            raise RuntimeError("invalid conversion '%" + template[spec_start:] + "' to 'format'")
        modifiers = template[spec_start:index]
        if len(modifiers) > 20:
            raise RuntimeError("invalid conversion (too long)")
        specifier = template[index]
        index += 1
        position += 1
        if position > len(args):
            raise arg_error(position, "format", "no value")
        value = args[position - 1]
        if specifier in "di":
            formatted = ("%" + modifiers + "d") % _format_integer(value, position)
        elif specifier in "ouxX":
            number = _format_integer(value, position)
            if number < 0:
                number &= 0xFFFFFFFFFFFFFFFF
            formatted = ("%" + modifiers + ("d" if specifier == "u" else specifier)) % number
        elif specifier in "eEfFgG":
            number = check_number(args, position, "format", vm)
            formatted = ("%" + modifiers + specifier) % float(number)
        elif specifier in "aA":
            number = float(check_number(args, position, "format", vm))
            formatted = number.hex()
            if specifier == "A":
                formatted = formatted.upper()
        elif specifier == "c":
            formatted = ("%" + modifiers + "s") % chr(_format_integer(value, position))
        elif specifier == "s":
            formatted = ("%" + modifiers + "s") % vm.tostring(value)
        elif specifier == "q":
            if modifiers:
                raise RuntimeError("specifier '%q' cannot have modifiers")
            formatted = _quote(value, position)
        else:
            raise RuntimeError(f"invalid conversion '%{modifiers}{specifier}' to 'format'")
        output.append(formatted)
    return "".join(output)


def open_string(vm: Any) -> LuaTable:  # noqa: ANN401
    members = {
        "byte": BuiltinFunction("string.byte", _string_byte),
        "char": BuiltinFunction("string.char", _string_char),
        "find": BuiltinFunction("string.find", _string_find),
        "format": BuiltinFunction("string.format", _string_format),
        "gmatch": BuiltinFunction("string.gmatch", _string_gmatch),
        "gsub": BuiltinFunction("string.gsub", _string_gsub),
        "len": BuiltinFunction("string.len", _string_len),
        "lower": BuiltinFunction("string.lower", _string_lower),
        "match": BuiltinFunction("string.match", _string_match),
        "rep": BuiltinFunction("string.rep", _string_rep),
        "reverse": BuiltinFunction("string.reverse", _string_reverse),
        "sub": BuiltinFunction("string.sub", _string_sub),
        "upper": BuiltinFunction("string.upper", _string_upper),
    }
    library = register_library(vm, "string", members)
    metatable = LuaTable()
    metatable.raw_set("__index", library)
    vm.string_metatable = metatable
    return library


__all__ = ["open_string"]
