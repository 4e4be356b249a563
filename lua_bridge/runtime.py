"""Running script text and small stack helpers."""

from __future__ import annotations

import logging
from typing import Any, List

from lua_vm import MULTRET, LuaState, LuaStatus, LuaSyntaxError

from . import codec

logger = logging.getLogger(__name__)


def execute_string(state: LuaState, source: str, chunkname: str | None = None) -> List[Any]:
    """Run ``source`` and return its results.

    Syntax errors raise :class:`lua_vm.LuaSyntaxError`; runtime errors
    propagate as :class:`lua_vm.LuaRuntimeError`. The stack is left as it was.
    """
    top = state.gettop()
    try:
        if state.load_string(source, chunkname) is not LuaStatus.OK:
            message = state.to_string(-1)
            raise LuaSyntaxError(message)
        state.call(0, MULTRET)
        return [codec.read_any(state, index) for index in range(top + 1, state.gettop() + 1)]
    finally:
        state.settop(top)


def execute_string_safe(state: LuaState, source: str, chunkname: str | None = None) -> LuaStatus:
    """Run ``source`` in protected mode.

    On failure the error value is left on the stack (see :func:`pop_error_message`);
    on success the chunk's results are.
    """
    status = state.do_string(source, chunkname)
    if status is not LuaStatus.OK:
        logger.debug("script failed with status %s", status.name)
    return status


def pop_error_message(state: LuaState) -> str:
    """Pop and return the error message on top of the stack, or ``""`` if there is none."""
    if state.is_string(-1) and not state.is_number(-1):
        message = state.to_string(-1)
        state.pop()
        return message
    return ""


def get_stack_size(state: LuaState) -> int:
    return state.gettop()


def stack_pop(state: LuaState, amount: int) -> None:
    state.pop(amount)


def stack_remove(state: LuaState, index: int) -> None:
    state.remove(index)


__all__ = [
    "execute_string",
    "execute_string_safe",
    "get_stack_size",
    "pop_error_message",
    "stack_pop",
    "stack_remove",
]
