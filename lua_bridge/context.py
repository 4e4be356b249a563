"""Per-state bridge context.

:func:`init` creates one :class:`BridgeContext` per :class:`~lua_vm.LuaState`
and stores it in the interpreter registry under a private pointer key, next to
the table that anchors every value held by a host handle.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterator

from lua_vm import REGISTRY_INDEX, LuaState, LuaTable, LuaType

from .errors import BridgeNotInitialized

if TYPE_CHECKING:
    from .binding import RegisteredType

logger = logging.getLogger(__name__)


class _RegistryKey:
    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"<registry key {self.name}>"


CONTEXT_KEY = _RegistryKey("lua_bridge.context")
REFS_KEY = _RegistryKey("lua_bridge.refs")


@dataclass
class BridgeContext:
    state: LuaState
    refs: LuaTable
    ids: Iterator[int] = field(default_factory=lambda: itertools.count(1))
    types: Dict[str, "RegisteredType"] = field(default_factory=dict)
    types_by_class: Dict[type, "RegisteredType"] = field(default_factory=dict)

    def new_ref_id(self) -> int:
        return next(self.ids)

    def clear_ref(self, key: int) -> None:
        # A single raw table write: safe from any thread, never touches the stack.
        self.refs.raw_set(key, None)

    def descriptor_for_class(self, cls: type) -> RegisteredType | None:
        for klass in cls.__mro__:
            descriptor = self.types_by_class.get(klass)
            if descriptor is not None:
                return descriptor
        return None

    def descriptor_for_metatable(self, metatable: LuaTable | None) -> RegisteredType | None:
        if metatable is None:
            return None
        name = metatable.raw_get("__name")
        descriptor = self.types.get(name) if isinstance(name, str) else None
        if descriptor is None or descriptor.metatable is not metatable:
            return None
        return descriptor


def init(state: LuaState) -> BridgeContext:
    """Prepare ``state`` for use with the bridge; calling it again returns the existing context."""
    existing = find_context(state)
    if existing is not None:
        return existing
    state.new_table()
    refs = state.value_at(-1)
    state.raw_set_p(REGISTRY_INDEX, REFS_KEY)
    context = BridgeContext(state, refs)
    state.push_light_userdata(context)
    state.raw_set_p(REGISTRY_INDEX, CONTEXT_KEY)
    logger.debug("bridge initialised for %r", state)
    return context


def find_context(state: LuaState) -> BridgeContext | None:
    kind = state.raw_get_p(REGISTRY_INDEX, CONTEXT_KEY)
    context = state.to_userdata(-1) if kind is LuaType.LIGHTUSERDATA else None
    state.pop()
    return context


def get_context(state: LuaState) -> BridgeContext:
    context = find_context(state)
    if context is None:
        raise BridgeNotInitialized("lua_bridge.init() has not been called for this state")
    return context


__all__ = ["BridgeContext", "CONTEXT_KEY", "REFS_KEY", "find_context", "get_context", "init"]
