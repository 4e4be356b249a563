"""Stack-based embedding API over :class:`~lua_vm.vm.BytecodeVM`.

``LuaState`` gives host code the classic interpreter protocol: values are
exchanged through a stack addressed by 1-based indices from the bottom of
the current call frame (negative indices count from the top), and host
functions pushed with :meth:`LuaState.push_closure` receive their arguments
on that stack and report how many results they left on it.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, NoReturn, Optional

from .errors import LuaRuntimeError, LuaSyntaxError
from .stdlib import LIBRARIES, install_stdlib
from .stdlib.helpers import typename_for_error
from .table import LuaTable
from .values import (
    HostClosure,
    LightUserdata,
    LuaThread,
    LuaUserdata,
    is_callable_value,
    is_truthy,
    number_to_string,
    raw_equal,
    to_integer,
    to_number,
)
from .vm import BytecodeVM

logger = logging.getLogger(__name__)

MULTRET = -1
REGISTRY_INDEX = -1001000


class LuaType(enum.IntEnum):
    NONE = -1
    NIL = 0
    BOOLEAN = 1
    LIGHTUSERDATA = 2
    NUMBER = 3
    STRING = 4
    TABLE = 5
    FUNCTION = 6
    USERDATA = 7
    THREAD = 8


class LuaStatus(enum.IntEnum):
    OK = 0
    YIELD = 1
    ERRRUN = 2
    ERRSYNTAX = 3
    ERRMEM = 4
    ERRERR = 5


_TYPE_NAMES = {
    LuaType.NONE: "no value",
    LuaType.NIL: "nil",
    LuaType.BOOLEAN: "boolean",
    LuaType.LIGHTUSERDATA: "userdata",
    LuaType.NUMBER: "number",
    LuaType.STRING: "string",
    LuaType.TABLE: "table",
    LuaType.FUNCTION: "function",
    LuaType.USERDATA: "userdata",
    LuaType.THREAD: "thread",
}


def type_of(value: Any) -> LuaType:
    if value is None:
        return LuaType.NIL
    if isinstance(value, bool):
        return LuaType.BOOLEAN
    if isinstance(value, (int, float)):
        return LuaType.NUMBER
    if isinstance(value, str):
        return LuaType.STRING
    if isinstance(value, LuaTable):
        return LuaType.TABLE
    if is_callable_value(value):
        return LuaType.FUNCTION
    if isinstance(value, LightUserdata):
        return LuaType.LIGHTUSERDATA
    if isinstance(value, LuaThread):
        return LuaType.THREAD
    return LuaType.USERDATA


@dataclass
class CallInfo:
    base: int
    closure: Optional[HostClosure] = None


HostFunction = Callable[["LuaState"], int]


class LuaState:
    def __init__(self, vm: Optional[BytecodeVM] = None, output: Optional[Any] = None) -> None:
        self.vm = vm if vm is not None else BytecodeVM()
        if output is not None:
            self.vm.output = output
        self.vm.host_invoker = self._invoke_host
        self._stack: List[Any] = []
        self._calls: List[CallInfo] = [CallInfo(0)]
        self._closed = False

    # ------------------------------------------------------------------ libraries
    def open_libs(self) -> None:
        install_stdlib(self.vm)

    def open_library(self, name: str) -> None:
        opener = LIBRARIES.get(name)
        if opener is None:
            raise ValueError(f"unknown library '{name}'")
        opener(self.vm)

    # ------------------------------------------------------------------ stack
    @property
    def _base(self) -> int:
        return self._calls[-1].base

    def gettop(self) -> int:
        return len(self._stack) - self._base

    def settop(self, index: int) -> None:
        if index >= 0:
            target = self._base + index
            if target > len(self._stack):
                self._stack.extend([None] * (target - len(self._stack)))
            else:
                del self._stack[target:]
        else:
            target = len(self._stack) + index + 1
            if target < self._base:
                raise IndexError("invalid new top")
            del self._stack[target:]

    def pop(self, n: int = 1) -> None:
        self.settop(-n - 1)

    def absindex(self, index: int) -> int:
        if index > 0 or index <= REGISTRY_INDEX:
            return index
        return self.gettop() + index + 1

    def _slot(self, index: int) -> int:
        if index > 0:
            slot = self._base + index - 1
        elif index < 0 and index > REGISTRY_INDEX:
            slot = len(self._stack) + index
            if slot < self._base:
                raise IndexError(f"invalid stack index {index}")
        else:
            raise IndexError(f"invalid stack index {index}")
        return slot

    def _get(self, index: int) -> Any:
        if index == REGISTRY_INDEX:
            return self.vm.registry
        slot = self._slot(index)
        if slot >= len(self._stack):
            return None
        return self._stack[slot]

    def _valid(self, index: int) -> bool:
        if index == REGISTRY_INDEX:
            return True
        try:
            return self._slot(index) < len(self._stack)
        except IndexError:
            return False

    def _pop_value(self) -> Any:
        if self.gettop() <= 0:
            raise IndexError("stack is empty")
        return self._stack.pop()

    def value_at(self, index: int) -> Any:
        """Raw VM value at ``index`` (nil for an empty slot)."""
        return self._get(index)

    def remove(self, index: int) -> None:
        del self._stack[self._slot(index)]

    def insert(self, index: int) -> None:
        slot = self._slot(index)
        value = self._pop_value()
        self._stack.insert(slot, value)

    def push_value(self, index: int) -> None:
        self._stack.append(self._get(index))

    # ------------------------------------------------------------------ push
    def push(self, value: Any) -> None:
        self._stack.append(value)

    def push_nil(self) -> None:
        self._stack.append(None)

    def push_boolean(self, value: bool) -> None:
        self._stack.append(bool(value))

    def push_number(self, value: float) -> None:
        self._stack.append(float(value))

    def push_integer(self, value: int) -> None:
        self._stack.append(int(value))

    def push_string(self, value: str) -> None:
        self._stack.append(str(value))

    def push_light_userdata(self, pointer: Any) -> None:
        self._stack.append(LightUserdata(pointer))

    # ------------------------------------------------------------------ queries
    def type(self, index: int) -> LuaType:
        if not self._valid(index):
            return LuaType.NONE
        return type_of(self._get(index))

    @staticmethod
    def typename(kind: LuaType) -> str:
        return _TYPE_NAMES[LuaType(kind)]

    def typename_at(self, index: int) -> str:
        return self.typename(self.type(index))

    def is_none(self, index: int) -> bool:
        return self.type(index) is LuaType.NONE

    def is_nil(self, index: int) -> bool:
        return self.type(index) is LuaType.NIL

    def is_none_or_nil(self, index: int) -> bool:
        return self.type(index) in (LuaType.NONE, LuaType.NIL)

    def is_boolean(self, index: int) -> bool:
        return self.type(index) is LuaType.BOOLEAN

    def is_number(self, index: int) -> bool:
        return self.to_number(index) is not None

    def is_integer(self, index: int) -> bool:
        value = self._get(index)
        return isinstance(value, int) and not isinstance(value, bool)

    def is_string(self, index: int) -> bool:
        return self.type(index) in (LuaType.STRING, LuaType.NUMBER)

    def is_table(self, index: int) -> bool:
        return self.type(index) is LuaType.TABLE

    def is_function(self, index: int) -> bool:
        return self.type(index) is LuaType.FUNCTION

    def is_userdata(self, index: int) -> bool:
        return self.type(index) in (LuaType.USERDATA, LuaType.LIGHTUSERDATA)

    def is_light_userdata(self, index: int) -> bool:
        return self.type(index) is LuaType.LIGHTUSERDATA

    def to_boolean(self, index: int) -> bool:
        return is_truthy(self._get(index))

    def to_number(self, index: int) -> Optional[Any]:
        return to_number(self._get(index))

    def to_integer(self, index: int) -> Optional[int]:
        return to_integer(self._get(index))

    def to_string(self, index: int) -> Optional[str]:
        value = self._get(index)
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return number_to_string(value)
        return None

    def to_userdata(self, index: int) -> Any:
        value = self._get(index)
        if isinstance(value, LuaUserdata):
            return value.value
        if isinstance(value, LightUserdata):
            return value.value
        return None

    def raw_equal(self, index1: int, index2: int) -> bool:
        if not self._valid(index1) or not self._valid(index2):
            return False
        return raw_equal(self._get(index1), self._get(index2))

    # ------------------------------------------------------------------ tables
    def new_table(self) -> None:
        self._stack.append(LuaTable())

    def _table_at(self, index: int) -> LuaTable:
        value = self._get(index)
        if not isinstance(value, LuaTable):
            raise TypeError(f"table expected at index {index}, got {self.typename_at(index)}")
        return value

    def get_table(self, index: int) -> LuaType:
        container = self._get(index)
        key = self._pop_value()
        value = self.vm.index(container, key)
        self._stack.append(value)
        return type_of(value)

    def set_table(self, index: int) -> None:
        container = self._get(index)
        value = self._pop_value()
        key = self._pop_value()
        self.vm.set_index(container, key, value)

    def get_field(self, index: int, name: str) -> LuaType:
        value = self.vm.index(self._get(index), name)
        self._stack.append(value)
        return type_of(value)

    def set_field(self, index: int, name: str) -> None:
        container = self._get(index)
        value = self._pop_value()
        self.vm.set_index(container, name, value)

    def raw_get(self, index: int) -> LuaType:
        table = self._table_at(index)
        key = self._pop_value()
        value = table.raw_get(key)
        self._stack.append(value)
        return type_of(value)

    def raw_set(self, index: int) -> None:
        table = self._table_at(index)
        value = self._pop_value()
        key = self._pop_value()
        table.raw_set(key, value)

    def raw_get_i(self, index: int, n: int) -> LuaType:
        value = self._table_at(index).raw_get(n)
        self._stack.append(value)
        return type_of(value)

    def raw_set_i(self, index: int, n: int) -> None:
        table = self._table_at(index)
        table.raw_set(n, self._pop_value())

    def raw_get_p(self, index: int, pointer: Any) -> LuaType:
        value = self._table_at(index).raw_get(LightUserdata(pointer))
        self._stack.append(value)
        return type_of(value)

    def raw_set_p(self, index: int, pointer: Any) -> None:
        table = self._table_at(index)
        table.raw_set(LightUserdata(pointer), self._pop_value())

    def raw_len(self, index: int) -> int:
        value = self._get(index)
        if isinstance(value, LuaTable):
            return value.lua_len()
        if isinstance(value, str):
            return len(value)
        return 0

    def len(self, index: int) -> None:
        self._stack.append(self.vm.length(self._get(index)))

    def next(self, index: int) -> bool:
        """Pop a key and push the next key/value pair; False (nothing pushed) at the end."""
        table = self._table_at(index)
        key = self._pop_value()
        item = table.next_item(key)
        if item is None:
            return False
        self._stack.extend(item)
        return True

    # ------------------------------------------------------------------ globals
    def get_global(self, name: str) -> LuaType:
        value = self.vm.index(self.vm.globals, name)
        self._stack.append(value)
        return type_of(value)

    def set_global(self, name: str) -> None:
        self.vm.set_index(self.vm.globals, name, self._pop_value())

    # ------------------------------------------------------------------ closures
    def push_closure(self, fn: HostFunction, n_upvalues: int = 0, name: str = "?") -> None:
        upvalues: List[Any] = []
        if n_upvalues:
            if n_upvalues > self.gettop():
                raise IndexError("not enough values on the stack for upvalues")
            upvalues = self._stack[-n_upvalues:]
            del self._stack[-n_upvalues:]
        self._stack.append(HostClosure(fn, upvalues, name))

    def push_function(self, fn: HostFunction, name: str = "?") -> None:
        self.push_closure(fn, 0, name)

    def upvalue(self, i: int) -> Any:
        closure = self._calls[-1].closure
        if closure is None or not 1 <= i <= len(closure.upvalues):
            return None
        return closure.upvalues[i - 1]

    @property
    def current_function_name(self) -> str:
        closure = self._calls[-1].closure
        return closure.name if closure is not None else "?"

    def _invoke_host(self, closure: HostClosure, args: List[Any]) -> List[Any]:
        base = len(self._stack)
        self._calls.append(CallInfo(base, closure))
        self._stack.extend(args)
        try:
            count = closure.func(self)
            if count is None:
                count = 0
            top = len(self._stack)
            if count > top - base:
                raise RuntimeError(f"function '{closure.name}' returned more results than it pushed")
            return self._stack[top - count : top] if count else []
        finally:
            del self._stack[base:]
            self._calls.pop()

    # ------------------------------------------------------------------ calls
    def _take_call(self, nargs: int) -> tuple:
        if nargs + 1 > self.gettop():
            raise IndexError("not enough values on the stack for call")
        func_slot = len(self._stack) - nargs - 1
        func = self._stack[func_slot]
        args = self._stack[func_slot + 1 :]
        del self._stack[func_slot:]
        return func, args

    def _push_results(self, results: List[Any], nresults: int) -> None:
        if nresults == MULTRET:
            self._stack.extend(results)
            return
        adjusted = list(results[:nresults])
        adjusted.extend([None] * (nresults - len(adjusted)))
        self._stack.extend(adjusted)

    def call(self, nargs: int, nresults: int = 0) -> None:
        func, args = self._take_call(nargs)
        results = self.vm.call(func, args)
        self._push_results(results, nresults)

    def pcall(self, nargs: int, nresults: int = 0) -> LuaStatus:
        func, args = self._take_call(nargs)
        try:
            results = self.vm.call(func, args)
        except LuaRuntimeError as exc:
            self._stack.append(exc.value)
            return LuaStatus.ERRRUN
        self._push_results(results, nresults)
        return LuaStatus.OK

    # ------------------------------------------------------------------ errors
    def where(self, level: int = 1) -> str:
        return self.vm.where(level)

    def error(self, message: str) -> NoReturn:
        """Raise a runtime error positioned at the script code that called the running function."""
        raise self.vm.runtime_error(message, 1)

    def raise_error(self) -> NoReturn:
        """Raise the value on top of the stack as an error, unchanged."""
        value = self._pop_value()
        raise LuaRuntimeError(value, self.vm.capture_traceback())

    def arg_error(self, narg: int, message: str) -> NoReturn:
        raise self.vm.runtime_error(f"bad argument #{narg} to '{self.current_function_name}' ({message})", 1)

    def type_error(self, narg: int, expected: str) -> NoReturn:
        if self._valid(narg):
            actual = typename_for_error(self.vm, self._get(narg))
        else:
            actual = "no value"
        self.arg_error(narg, f"{expected} expected, got {actual}")

    # ------------------------------------------------------------------ userdata
    def new_userdata(self, payload: Any) -> LuaUserdata:
        userdata = LuaUserdata(payload, self.vm)
        self._stack.append(userdata)
        return userdata

    def set_metatable(self, index: int) -> None:
        target = self._get(index)
        metatable = self._pop_value()
        if metatable is not None and not isinstance(metatable, LuaTable):
            raise TypeError("metatable must be a table or nil")
        self.vm.set_metatable(target, metatable)

    def get_metatable(self, index: int) -> bool:
        metatable = self.vm.get_metatable(self._get(index))
        if metatable is None:
            return False
        self._stack.append(metatable)
        return True

    def new_metatable(self, tname: str) -> bool:
        existing = self.vm.registry.raw_get(tname)
        if existing is not None:
            self._stack.append(existing)
            return False
        metatable = LuaTable()
        metatable.raw_set("__name", tname)
        self.vm.registry.raw_set(tname, metatable)
        self._stack.append(metatable)
        return True

    def get_named_metatable(self, tname: str) -> LuaType:
        value = self.vm.registry.raw_get(tname)
        self._stack.append(value)
        return type_of(value)

    def test_userdata(self, index: int, tname: str) -> Any:
        value = self._get(index)
        if not isinstance(value, LuaUserdata):
            return None
        expected = self.vm.registry.raw_get(tname)
        if expected is None or value.metatable is not expected:
            return None
        return value.value

    def check_userdata(self, index: int, tname: str) -> Any:
        payload = self.test_userdata(index, tname)
        if payload is None:
            self.type_error(index, tname)
        return payload

    # ------------------------------------------------------------------ chunks
    def load_string(self, source: str, chunkname: Optional[str] = None) -> LuaStatus:
        try:
            function = self.vm.load(source, chunkname)
        except LuaSyntaxError as exc:
            self._stack.append(str(exc))
            return LuaStatus.ERRSYNTAX
        self._stack.append(function)
        return LuaStatus.OK

    def do_string(self, source: str, chunkname: Optional[str] = None) -> LuaStatus:
        status = self.load_string(source, chunkname)
        if status is not LuaStatus.OK:
            return status
        return self.pcall(0, MULTRET)

    # ------------------------------------------------------------------ lifetime
    def close(self) -> None:
        """Drop the stack and run pending finalizers."""
        if self._closed:
            return
        self._closed = True
        del self._stack[:]
        self.vm.close()
        logger.debug("state closed")

    def __enter__(self) -> "LuaState":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


__all__ = [
    "CallInfo",
    "LuaState",
    "LuaStatus",
    "LuaType",
    "MULTRET",
    "REGISTRY_INDEX",
    "type_of",
]
