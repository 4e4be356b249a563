"""Opening standard libraries and creating bridge-ready states."""

from __future__ import annotations

import enum
import logging
from typing import Any

from lua_vm import LuaState

from .context import init

logger = logging.getLogger(__name__)


class Libs(enum.IntFlag):
    NONE = 0
    BASE = 1 << 1
    COROUTINE = 1 << 2
    DEBUG = 1 << 3
    IO = 1 << 4
    MATH = 1 << 5
    OS = 1 << 6
    PACKAGE = 1 << 7
    STRING = 1 << 8
    TABLE = 1 << 9
    UTF8 = 1 << 10
    ALL = (1 << 16) - 1


_LIBRARY_NAMES = (
    (Libs.BASE, "base"),
    (Libs.PACKAGE, "package"),
    (Libs.COROUTINE, "coroutine"),
    (Libs.TABLE, "table"),
    (Libs.IO, "io"),
    (Libs.OS, "os"),
    (Libs.STRING, "string"),
    (Libs.MATH, "math"),
    (Libs.UTF8, "utf8"),
    (Libs.DEBUG, "debug"),
)


def open_libraries(state: LuaState, libs: Libs) -> None:
    """Open the standard libraries selected by ``libs``."""
    libs = Libs(libs)
    if libs == Libs.ALL:
        state.open_libs()
        logger.debug("opened all libraries")
        return
    for flag, name in _LIBRARY_NAMES:
        if libs & flag:
            state.open_library(name)
            logger.debug("opened library '%s'", name)


def new_state(libs: Libs = Libs.NONE, output: Any | None = None) -> LuaState:
    """A fresh state with ``libs`` opened and the bridge initialised."""
    state = LuaState(output=output)
    open_libraries(state, libs)
    init(state)
    return state


__all__ = ["Libs", "new_state", "open_libraries"]
