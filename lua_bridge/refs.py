"""Host handles to interpreter-owned tables and functions.

A handle does not hold a stack slot. Capturing a value stores it in the
bridge's anchor table under a fresh integer key; every copy of the handle
shares that key and a lock-protected count, and the last release clears the
entry so the interpreter may collect the value.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterator, List, Tuple

from lua_vm import REGISTRY_INDEX, LuaState, LuaType

from . import codec
from .context import REFS_KEY, BridgeContext, get_context
from .errors import BridgeError

logger = logging.getLogger(__name__)


class _Anchor:
    __slots__ = ("context", "key", "count", "lock")

    def __init__(self, context: BridgeContext, key: int) -> None:
        self.context = context
        self.key = key
        self.count = 1
        self.lock = threading.Lock()

    def acquire(self) -> None:
        with self.lock:
            if self.count == 0:
                raise RuntimeError(f"reference {self.key} was already released")
            self.count += 1


def _push_refs_table(state: LuaState) -> None:
    state.raw_get_p(REGISTRY_INDEX, REFS_KEY)


def registry_contains(state: LuaState, key: int) -> bool:
    """True while some handle still anchors ``key``."""
    _push_refs_table(state)
    present = state.raw_get_i(-1, key) is not LuaType.NIL
    state.pop(2)
    return present


class LuaRef:
    """Shared-ownership handle to one interpreter value."""

    lua_type = LuaType.NONE

    def __init__(self, anchor: _Anchor) -> None:
        self._anchor = anchor
        self._released = False

    @classmethod
    def capture(cls, state: LuaState, index: int) -> "LuaRef":
        """Anchor the value at ``index`` and return a new handle to it."""
        context = get_context(state)
        index = state.absindex(index)
        if cls.lua_type is not LuaType.NONE and state.type(index) is not cls.lua_type:
            raise codec.mismatch(state, index, LuaState.typename(cls.lua_type), cls.__name__)
        key = context.new_ref_id()
        _push_refs_table(state)
        state.push_value(index)
        state.raw_set_i(-2, key)
        state.pop()
        logger.debug("captured %s as reference %d", state.typename_at(index), key)
        return cls(_Anchor(context, key))

    @property
    def key(self) -> int:
        return self._anchor.key

    @property
    def state(self) -> LuaState:
        return self._anchor.context.state

    @property
    def released(self) -> bool:
        return self._released

    def push(self, state: LuaState | None = None) -> None:
        if self._released:
            raise RuntimeError("cannot use a released reference")
        if state is None:
            state = self.state
        elif state is not self.state:
            raise BridgeError(f"reference {self._anchor.key} belongs to another interpreter")
        _push_refs_table(state)
        state.raw_get_i(-1, self._anchor.key)
        state.remove(-2)

    def copy(self) -> "LuaRef":
        if self._released:
            raise RuntimeError("cannot copy a released reference")
        self._anchor.acquire()
        return type(self)(self._anchor)

    __copy__ = copy

    def release(self) -> None:
        anchor = self._anchor
        with anchor.lock:
            if self._released:
                return
            self._released = True
            anchor.count -= 1
            last = anchor.count == 0
        if last:
            anchor.context.clear_ref(anchor.key)
            logger.debug("released reference %d", anchor.key)

    def __enter__(self) -> "LuaRef":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()

    def __del__(self) -> None:
        # Partially constructed handles have no anchor to release.
        if getattr(self, "_anchor", None) is not None:
            self.release()

    def __repr__(self) -> str:
        status = "released" if self._released else f"ref {self._anchor.key}"
        return f"<{type(self).__name__} {status}>"


class Table(LuaRef):
    """Handle to an interpreter table."""

    lua_type = LuaType.TABLE

    def get(self, key: Any, kind: Any = None) -> Any:
        state = self.state
        top = state.gettop()
        try:
            self.push(state)
            codec.push(state, key)
            state.get_table(-2)
            return codec.read(state, -1, kind)
        finally:
            state.settop(top)

    def set(self, key: Any, value: Any) -> None:
        state = self.state
        top = state.gettop()
        try:
            self.push(state)
            codec.push(state, key)
            codec.push(state, value)
            state.set_table(-3)
        finally:
            state.settop(top)

    __getitem__ = get
    __setitem__ = set

    def length(self) -> int:
        state = self.state
        top = state.gettop()
        try:
            self.push(state)
            state.len(-1)
            return codec.read(state, -1, int)
        finally:
            state.settop(top)

    def __len__(self) -> int:
        return self.length()

    def items(self, key_kind: Any = None, value_kind: Any = None) -> List[Tuple[Any, Any]]:
        """Key/value pairs in the interpreter's ``next`` order."""
        state = self.state
        top = state.gettop()
        pairs: List[Tuple[Any, Any]] = []
        try:
            self.push(state)
            state.push_nil()
            while state.next(-2):
                pairs.append((codec.read(state, -2, key_kind), codec.read(state, -1, value_kind)))
                state.pop()
        finally:
            state.settop(top)
        return pairs

    def keys(self, kind: Any = None) -> List[Any]:
        return [key for key, _ in self.items(key_kind=kind)]

    def values(self, kind: Any = None) -> List[Any]:
        return [value for _, value in self.items(value_kind=kind)]

    def __iter__(self) -> Iterator[Any]:
        return iter(self.keys())


class Function(LuaRef):
    """Handle to an interpreter function."""

    lua_type = LuaType.FUNCTION

    def call(self, *args: Any, returns: Any = None) -> Any:
        """Call with ``args``; with ``returns`` set, read one result as that kind."""
        state = self.state
        top = state.gettop()
        try:
            self.push(state)
            nargs = codec.push_all(state, *args)
            if returns is None:
                state.call(nargs, 0)
                return None
            state.call(nargs, 1)
            return codec.read(state, -1, returns)
        finally:
            state.settop(top)

    def __call__(self, *args: Any, returns: Any = None) -> Any:
        return self.call(*args, returns=returns)


__all__ = ["Function", "LuaRef", "Table", "registry_contains"]
