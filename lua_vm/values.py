from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from .table import LuaTable

logger = logging.getLogger(__name__)

_DECIMAL_INT = re.compile(r"[+-]?\d+")
_DECIMAL_FLOAT = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_HEX_INT = re.compile(r"([+-]?)0[xX]([0-9a-fA-F]+)")
_HEX_FLOAT = re.compile(r"([+-]?)0[xX]([0-9a-fA-F]*\.?[0-9a-fA-F]*)([pP][+-]?\d+)?")

_INT_BITS = 1 << 64


def wrap_integer(value: int) -> int:
    """Wrap ``value`` into the signed 64 bit range Lua integers live in."""
    value &= _INT_BITS - 1
    if value >= 1 << 63:
        value -= _INT_BITS
    return value


@dataclass
class LuaMultiReturn:
    values: Sequence[Any]


class Cell:
    """Mutable box shared between a local variable and the closures capturing it."""

    __slots__ = ("value",)

    def __init__(self, value: Any = None) -> None:
        self.value = value

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Cell({self.value!r})"


class LuaFunction:
    """A Lua closure: compiled entry point plus captured upvalue cells."""

    __slots__ = ("program", "label", "upvalues", "name")

    def __init__(self, program, label: str, upvalues: List[Cell], name: str = "?") -> None:
        self.program = program
        self.label = label
        self.upvalues = upvalues
        self.name = name

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<LuaFunction {self.name}>"


class BuiltinFunction:
    __slots__ = ("name", "func", "doc", "__lua_builtin__")

    def __init__(
        self,
        name: str,
        func: Callable[[Sequence[Any], Any], Any],
        doc: str = "",
    ) -> None:
        self.name = name
        self.func = func
        self.doc = doc
        self.__lua_builtin__ = True  # marker for the VM

    def __call__(self, args: Sequence[Any], vm: Any) -> Any:  # noqa: ANN401 - VM is dynamic
        return self.func(args, vm)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<BuiltinFunction {self.name}>"


class HostClosure:
    """Stack-protocol function pushed through ``LuaState.push_closure``.

    ``func`` receives the state, reads its arguments from the stack and
    returns how many results it left on top of it.
    """

    __slots__ = ("func", "upvalues", "name")

    def __init__(self, func: Callable[[Any], int], upvalues: List[Any], name: str) -> None:
        self.func = func
        self.upvalues = upvalues
        self.name = name

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<HostClosure {self.name}>"


class LightUserdata:
    """A bare host pointer. Two light userdata are equal when they point at the same object."""

    __slots__ = ("value",)

    def __init__(self, value: Any) -> None:
        self.value = value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, LightUserdata) and other.value is self.value

    def __hash__(self) -> int:
        return hash((LightUserdata, id(self.value)))

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<LightUserdata {type(self.value).__name__} at {id(self.value):#x}>"


class LuaUserdata:
    """Full userdata: a host payload owned by the VM, with an optional metatable.

    When the VM drops its last reference the ``__gc`` metamethod, if any,
    runs exactly once with the userdata as its argument.
    """

    __slots__ = ("value", "metatable", "_vm", "_finalized", "__weakref__")

    def __init__(self, value: Any, vm: Any = None, metatable: Optional[LuaTable] = None) -> None:
        self.value = value
        self.metatable = metatable
        self._vm = vm
        self._finalized = False
        if vm is not None:
            vm.track_userdata(self)

    def get_metatable(self) -> Optional[LuaTable]:
        return self.metatable

    def set_metatable(self, metatable: Optional[LuaTable]) -> None:
        self.metatable = metatable

    def finalize(self) -> None:
        if self._finalized:
            return
        self._finalized = True
        metatable = self.metatable
        vm = self._vm
        if metatable is None or vm is None:
            return
        handler = metatable.raw_get("__gc")
        if handler is None:
            return
        try:
            vm.call(handler, [self])
        except Exception:  # noqa: BLE001 - finalizers cannot propagate
            logger.warning("error in __gc metamethod", exc_info=True)

    def __del__(self) -> None:
        self.finalize()

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<LuaUserdata {type(self.value).__name__}>"


class LuaThread:
    """Base for coroutine objects; scripts see them as type ``thread``."""

    __slots__ = ()


def is_callable_value(value: Any) -> bool:
    return isinstance(value, (LuaFunction, BuiltinFunction, HostClosure))


def lua_type_name(value: Any) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, LuaTable):
        return "table"
    if is_callable_value(value):
        return "function"
    if isinstance(value, LuaThread):
        return "thread"
    if isinstance(value, (LuaUserdata, LightUserdata)):
        return "userdata"
    return "userdata"


def is_truthy(value: Any) -> bool:
    return value is not None and value is not False


def number_to_string(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if math.isnan(value):
        return "-nan" if math.copysign(1.0, value) < 0 else "nan"
    text = "%.14g" % value
    if re.fullmatch(r"-?\d+", text):
        text += ".0"
    return text


def str_to_number(text: str) -> Optional[Any]:
    """Convert ``text`` following Lua's numeral rules, or return None."""
    stripped = text.strip()
    if not stripped:
        return None
    match = _HEX_INT.fullmatch(stripped)
    if match:
        value = wrap_integer(int(match.group(2), 16))
        return -value if match.group(1) == "-" else value
    match = _HEX_FLOAT.fullmatch(stripped)
    if match and match.group(2) not in ("", "."):
        sign, mantissa, exponent = match.groups()
        if "." not in mantissa:
            mantissa += "."
        if mantissa.startswith("."):
            mantissa = "0" + mantissa
        if mantissa.endswith("."):
            mantissa += "0"
        value = float.fromhex(f"0x{mantissa}{exponent or 'p0'}")
        return -value if sign == "-" else value
    if _DECIMAL_INT.fullmatch(stripped):
        value = int(stripped)
        if -(1 << 63) <= value < (1 << 63):
            return value
        return float(value)
    if _DECIMAL_FLOAT.fullmatch(stripped):
        return float(stripped)
    return None


def float_to_integer(value: float) -> Optional[int]:
    if isinstance(value, float):
        if not value.is_integer():
            return None
        result = int(value)
        if not -(1 << 63) <= result < (1 << 63):
            return None
        return result
    return value


def to_number(value: Any) -> Optional[Any]:
    """Numeric coercion used by arithmetic: numbers pass through, strings are parsed."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        return str_to_number(value)
    return None


def to_integer(value: Any) -> Optional[int]:
    number = to_number(value)
    if number is None:
        return None
    return float_to_integer(number)


def raw_tostring(value: Any) -> str:
    """String conversion that ignores ``__tostring``."""
    if value is None:
        return "nil"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, (int, float)):
        return number_to_string(value)
    if isinstance(value, str):
        return value
    if isinstance(value, LuaTable):
        return f"table: 0x{id(value):08x}"
    if is_callable_value(value):
        return f"function: 0x{id(value):08x}"
    if isinstance(value, LuaThread):
        return f"thread: 0x{id(value):08x}"
    if isinstance(value, LightUserdata):
        return f"userdata: 0x{id(value.value):08x}"
    return f"userdata: 0x{id(value):08x}"


def raw_equal(left: Any, right: Any) -> bool:
    if left is right:
        return True
    if isinstance(left, bool) or isinstance(right, bool):
        return False
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if isinstance(left, LightUserdata) and isinstance(right, LightUserdata):
        return left == right
    return False


__all__ = [
    "BuiltinFunction",
    "Cell",
    "HostClosure",
    "LightUserdata",
    "LuaFunction",
    "LuaMultiReturn",
    "LuaThread",
    "LuaUserdata",
    "float_to_integer",
    "is_callable_value",
    "is_truthy",
    "lua_type_name",
    "number_to_string",
    "raw_equal",
    "raw_tostring",
    "str_to_number",
    "to_integer",
    "to_number",
    "wrap_integer",
]
