"""Embedding bridge between Python hosts and the :mod:`lua_vm` interpreter."""

# codec must be imported before refs: refs reaches codec through the package at call time.
from . import codec
from .refs import Function, LuaRef, Table, registry_contains
from .binding import LuaObject, RegisteredType, TypeBuilder, register_type, register_type_function
from .calls import call_function, get_global, has_global, register_function, set_global
from .codec import Pointer, push, push_all, read, read_any
from .config import BridgeConfig, configure, get_config, reset_config
from .context import BridgeContext, get_context, init
from .errors import BindingError, BridgeError, BridgeNotInitialized, LuaTypeError
from .libs import Libs, new_state, open_libraries
from .runtime import (
    execute_string,
    execute_string_safe,
    get_stack_size,
    pop_error_message,
    stack_pop,
    stack_remove,
)

__all__ = [
    "BindingError",
    "BridgeConfig",
    "BridgeContext",
    "BridgeError",
    "BridgeNotInitialized",
    "Function",
    "Libs",
    "LuaObject",
    "LuaRef",
    "LuaTypeError",
    "Pointer",
    "RegisteredType",
    "Table",
    "TypeBuilder",
    "call_function",
    "codec",
    "configure",
    "execute_string",
    "execute_string_safe",
    "get_config",
    "get_context",
    "get_global",
    "get_stack_size",
    "has_global",
    "init",
    "new_state",
    "open_libraries",
    "pop_error_message",
    "push",
    "push_all",
    "read",
    "read_any",
    "register_function",
    "register_type",
    "register_type_function",
    "registry_contains",
    "reset_config",
    "set_global",
    "stack_pop",
    "stack_remove",
]
