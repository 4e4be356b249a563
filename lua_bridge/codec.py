"""Conversion between host values and interpreter stack slots.

A codec is resolved once per declared kind (:func:`codec_for`) and then used
to push values of that kind and to read stack slots back as that kind. The
closed set of kinds is ``bool``, real numbers, ``str``, :class:`Pointer`,
:class:`~lua_bridge.refs.Table`, :class:`~lua_bridge.refs.Function` and
classes registered with :func:`~lua_bridge.binding.register_type`.
"""

from __future__ import annotations

import copy
import numbers
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from lua_vm import LuaState, LuaType, LuaUserdata
from lua_vm.stdlib.helpers import typename_for_error

from .context import BridgeContext, find_context
from .errors import BindingError, LuaTypeError
from .refs import Function, LuaRef, Table

if TYPE_CHECKING:
    from .binding import RegisteredType


@dataclass(frozen=True, eq=False)
class Pointer:
    """An unchecked host reference, carried through the interpreter as light userdata."""

    target: Any

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Pointer) and other.target is self.target

    def __hash__(self) -> int:
        return hash((Pointer, id(self.target)))


def describe_slot(state: LuaState, index: int) -> str:
    """Type name of a stack slot as it appears in 'expected, got' messages."""
    if state.type(index) is LuaType.NONE:
        return "no value"
    return typename_for_error(state.vm, state.value_at(index))


def mismatch(state: LuaState, index: int, lua_name: str, kind_name: str | None = None) -> LuaTypeError:
    """Error for a slot that is not a ``lua_name``; ``expected`` names the host kind that was asked for."""
    return LuaTypeError(kind_name or lua_name, f"{lua_name} expected, got {describe_slot(state, index)}")


def to_double(value: Any, kind_name: str = "number") -> float:
    try:
        return float(value)
    except OverflowError as exc:
        raise LuaTypeError(kind_name, f"{type(value).__name__} value is too large for a number") from exc


class Codec:
    lua_name = "value"

    def __init__(self, kind: Any) -> None:
        self.kind = kind

    def push(self, state: LuaState, value: Any) -> None:
        raise NotImplementedError

    def read(self, state: LuaState, index: int) -> Any:
        raise NotImplementedError

    @property
    def kind_name(self) -> str:
        return getattr(self.kind, "__name__", repr(self.kind))

    def mismatch(self, state: LuaState, index: int) -> LuaTypeError:
        return mismatch(state, index, self.lua_name, self.kind_name)

    def check_returnable(self) -> None:
        """Raise :class:`BindingError` if values of this kind cannot be pushed by value."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.lua_name}>"


class BooleanCodec(Codec):
    lua_name = "boolean"

    def push(self, state: LuaState, value: Any) -> None:
        state.push_boolean(bool(value))

    def read(self, state: LuaState, index: int) -> bool:
        if not state.is_boolean(index):
            raise self.mismatch(state, index)
        return state.to_boolean(index)


class NumberCodec(Codec):
    """Any ``numbers.Real`` kind; the interpreter holds it as a double."""

    lua_name = "number"

    def push(self, state: LuaState, value: Any) -> None:
        state.push_number(to_double(value, self.kind_name))

    def read(self, state: LuaState, index: int) -> Any:
        number = state.to_number(index)
        if number is None:
            raise self.mismatch(state, index)
        if self.kind is float:
            return float(number)
        if self.kind is int:
            try:
                return int(number)
            except (OverflowError, ValueError):
                raise LuaTypeError(self.kind_name, "number has no integer representation") from None
        return self.kind(number)


class StringCodec(Codec):
    lua_name = "string"

    def push(self, state: LuaState, value: Any) -> None:
        state.push_string(value)

    def read(self, state: LuaState, index: int) -> str:
        text = state.to_string(index)
        if text is None:
            raise self.mismatch(state, index)
        return text


class PointerCodec(Codec):
    lua_name = "light userdata"

    def push(self, state: LuaState, value: Any) -> None:
        state.push_light_userdata(value.target if isinstance(value, Pointer) else value)

    def read(self, state: LuaState, index: int) -> Pointer:
        if not state.is_light_userdata(index):
            raise self.mismatch(state, index)
        return Pointer(state.to_userdata(index))


class TableCodec(Codec):
    lua_name = "table"

    def push(self, state: LuaState, value: Any) -> None:
        value.push(state)

    def read(self, state: LuaState, index: int) -> Table:
        if not state.is_table(index):
            raise self.mismatch(state, index)
        return Table.capture(state, index)


class FunctionCodec(Codec):
    lua_name = "function"

    def push(self, state: LuaState, value: Any) -> None:
        value.push(state)

    def read(self, state: LuaState, index: int) -> Function:
        if not state.is_function(index):
            raise self.mismatch(state, index)
        return Function.capture(state, index)


class NativeCodec(Codec):
    """Instances of a registered class, stored as tagged full userdata."""

    def __init__(self, descriptor: "RegisteredType", context: BridgeContext) -> None:
        super().__init__(descriptor.cls)
        self.descriptor = descriptor
        self.context = context

    @property
    def lua_name(self) -> str:  # type: ignore[override]
        return self.descriptor.name

    @property
    def kind_name(self) -> str:
        return self.descriptor.name

    def push(self, state: LuaState, value: Any) -> None:
        descriptor = self.context.descriptor_for_class(type(value)) or self.descriptor
        push_native(state, descriptor, copy.copy(value))

    def read(self, state: LuaState, index: int) -> Any:
        value = state.value_at(index)
        if isinstance(value, LuaUserdata) and value.value is not None:
            if self.descriptor.pointer_safety:
                if isinstance(value.value, self.descriptor.cls):
                    return value.value
            else:
                actual = self.context.descriptor_for_metatable(value.metatable)
                if actual is not None and actual.derives_from(self.descriptor):
                    return value.value
        raise self.mismatch(state, index)

    def check_returnable(self) -> None:
        if getattr(self.descriptor.cls, "__copy__", True) is None:
            raise BindingError(f"'{self.descriptor.name}' cannot be passed by value: copying is disabled")


def push_native(state: LuaState, descriptor: "RegisteredType", payload: Any) -> None:
    """Push ``payload`` itself as a new userdata tagged with ``descriptor``."""
    state.new_userdata(payload)
    state.push(descriptor.metatable)
    state.set_metatable(-2)


_SIMPLE_CODECS = {
    bool: BooleanCodec(bool),
    str: StringCodec(str),
    Pointer: PointerCodec(Pointer),
    Table: TableCodec(Table),
    Function: FunctionCodec(Function),
}


def codec_for(kind: Any, context: BridgeContext | None = None) -> Codec:
    """Resolve the codec for a declared kind; unknown kinds raise :class:`BindingError`."""
    codec = _SIMPLE_CODECS.get(kind) if isinstance(kind, type) else None
    if codec is not None:
        return codec
    if isinstance(kind, type):
        if issubclass(kind, numbers.Real) and not issubclass(kind, bool):
            return NumberCodec(kind)
        if context is not None:
            descriptor = context.types_by_class.get(kind)
            if descriptor is not None:
                return NativeCodec(descriptor, context)
    name = getattr(kind, "__name__", repr(kind))
    raise BindingError(f"'{name}' cannot cross into the interpreter; register the type first")


def push(state: LuaState, value: Any) -> None:
    """Push one host value, choosing the conversion from its runtime type."""
    if value is None:
        state.push_nil()
    elif isinstance(value, bool):
        state.push_boolean(value)
    elif isinstance(value, numbers.Real):
        state.push_number(to_double(value, type(value).__name__))
    elif isinstance(value, str):
        state.push_string(value)
    elif isinstance(value, Pointer):
        state.push_light_userdata(value.target)
    elif isinstance(value, LuaRef):
        value.push(state)
    else:
        context = find_context(state)
        descriptor = context.descriptor_for_class(type(value)) if context is not None else None
        if descriptor is None:
            raise BindingError(f"cannot push a value of type '{type(value).__name__}'")
        push_native(state, descriptor, copy.copy(value))


def push_all(state: LuaState, *values: Any) -> int:
    for value in values:
        push(state, value)
    return len(values)


def read(state: LuaState, index: int, kind: Any = None) -> Any:
    """Read the slot at ``index`` as ``kind``; without a kind, as whatever it holds."""
    if kind is None:
        return read_any(state, index)
    return codec_for(kind, find_context(state)).read(state, index)


def read_any(state: LuaState, index: int) -> Any:
    kind = state.type(index)
    if kind in (LuaType.NONE, LuaType.NIL):
        return None
    if kind is LuaType.BOOLEAN:
        return state.to_boolean(index)
    if kind is LuaType.NUMBER:
        return state.value_at(index)
    if kind is LuaType.STRING:
        return state.to_string(index)
    if kind is LuaType.TABLE:
        return Table.capture(state, index)
    if kind is LuaType.FUNCTION:
        return Function.capture(state, index)
    if kind is LuaType.LIGHTUSERDATA:
        return Pointer(state.to_userdata(index))
    if kind is LuaType.USERDATA:
        return state.to_userdata(index)
    raise LuaTypeError("value", f"cannot convert a {state.typename_at(index)} value")


__all__ = [
    "Codec",
    "NativeCodec",
    "Pointer",
    "codec_for",
    "describe_slot",
    "mismatch",
    "push",
    "push_all",
    "push_native",
    "read",
    "read_any",
]
