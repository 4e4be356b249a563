"""``utf8`` library over the VM's native strings.

Strings are sequences of code points, so every position is a character
position and each character is a single code.
"""

from __future__ import annotations

from typing import Any, Sequence

from ..table import LuaTable
from ..values import BuiltinFunction, LuaMultiReturn
from .helpers import arg_error, check_integer, check_string, opt_integer, register_library

CHARPATTERN = "[\x00-\x7F\xC2-\xFD][\x80-\xBF]*"


def _relative(pos: int, length: int) -> int:
    if pos >= 0:
        return pos
    if -pos > length:
        return 0
    return length + pos + 1


def _utf8_char(args: Sequence[Any], vm: Any) -> str:
    chars = []
    for position in range(1, len(args) + 1):
        code = check_integer(args, position, "char", vm)
        if not 0 <= code <= 0x10FFFF:
            raise arg_error(position, "char", "value out of range")
        chars.append(chr(code))
    return "".join(chars)


def _utf8_codepoint(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    text = check_string(args, 1, "codepoint", vm)
    start = _relative(opt_integer(args, 2, "codepoint", 1), len(text))
    end = _relative(opt_integer(args, 3, "codepoint", start), len(text))
    if start < 1:
        raise arg_error(2, "codepoint", "out of bounds")
    if end > len(text):
        raise arg_error(3, "codepoint", "out of bounds")
    if start > end:
        return LuaMultiReturn([])
    return LuaMultiReturn([ord(ch) for ch in text[start - 1 : end]])


def _utf8_len(args: Sequence[Any], vm: Any) -> int:
    text = check_string(args, 1, "len", vm)
    start = _relative(opt_integer(args, 2, "len", 1), len(text))
    end = _relative(opt_integer(args, 3, "len", -1), len(text))
    if not 1 <= start <= len(text) + 1:
        raise arg_error(2, "len", "initial position out of bounds")
    if end > len(text):
        raise arg_error(3, "len", "final position out of bounds")
    return max(0, end - start + 1)


def _utf8_offset(args: Sequence[Any], vm: Any) -> Any:
    text = check_string(args, 1, "offset", vm)
    n = check_integer(args, 2, "offset", vm)
    default = 1 if n >= 0 else len(text) + 1
    i = _relative(opt_integer(args, 3, "offset", default), len(text))
    if not 1 <= i <= len(text) + 1:
        raise arg_error(3, "offset", "position out of bounds")
    if n == 0:
        return i
    target = i + n - 1 if n > 0 else i + n
    if 1 <= target <= len(text) + 1:
        return target
    return None


def _codes_step(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    text = check_string(args, 1, "codes", vm)
    index = check_integer(args, 2, "codes", vm) + 1
    if index > len(text):
        return LuaMultiReturn([None])
    return LuaMultiReturn([index, ord(text[index - 1])])


_CODES_STEP = BuiltinFunction("codes_iterator", _codes_step)


def _utf8_codes(args: Sequence[Any], vm: Any) -> LuaMultiReturn:
    text = check_string(args, 1, "codes", vm)
    return LuaMultiReturn([_CODES_STEP, text, 0])


def open_utf8(vm: Any) -> LuaTable:  # noqa: ANN401
    members = {
        "char": BuiltinFunction("utf8.char", _utf8_char),
        "charpattern": CHARPATTERN,
        "codepoint": BuiltinFunction("utf8.codepoint", _utf8_codepoint),
        "codes": BuiltinFunction("utf8.codes", _utf8_codes),
        "len": BuiltinFunction("utf8.len", _utf8_len),
        "offset": BuiltinFunction("utf8.offset", _utf8_offset),
    }
    return register_library(vm, "utf8", members)


__all__ = ["open_utf8"]
