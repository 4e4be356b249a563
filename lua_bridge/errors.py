"""Exceptions raised by the bridge.

Argument and conversion failures are :class:`LuaTypeError`. They reach the
host as ordinary exceptions when the host calls into the interpreter, and are
turned into interpreter errors when the interpreter calls into the host.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error raised by :mod:`lua_bridge`."""


class LuaTypeError(BridgeError):
    """A stack value was missing or was not of the expected kind.

    ``expected`` names the host kind that was asked for (``"bool"``,
    ``"float"``, a registered type name ...); ``message`` uses the
    interpreter's wording (``"boolean expected, got number"``).
    """

    def __init__(self, expected: str, message: str | None = None) -> None:
        self.expected = expected
        self.message = message if message is not None else f"{expected} expected"
        super().__init__(self.message)


class BindingError(BridgeError, TypeError):
    """Misuse detected while binding a function or type."""


class BridgeNotInitialized(BridgeError, RuntimeError):
    """The bridge was used on a state before :func:`lua_bridge.init`."""


__all__ = ["BindingError", "BridgeError", "BridgeNotInitialized", "LuaTypeError"]
