"""Calls across the boundary in both directions.

Host callables are wrapped into interpreter closures whose argument and
result conversions are resolved once, from type annotations, when the
callable is bound. Conversion failures inside such a closure are reported as
interpreter errors (``bad argument #N to 'name' (...)``) so scripts can catch
them with ``pcall``.
"""

from __future__ import annotations

import inspect
import logging
import typing
from dataclasses import dataclass
from typing import Any, Callable, List, NoReturn, Sequence, Tuple

from lua_vm import LuaState, LuaType

from . import codec
from .codec import Codec, codec_for
from .context import BridgeContext, find_context
from .errors import BindingError, BridgeError, LuaTypeError
from .refs import LuaRef

logger = logging.getLogger(__name__)

HostFunction = Callable[[LuaState], int]
_EMPTY = inspect.Parameter.empty


@dataclass(frozen=True)
class Parameter:
    name: str
    codec: Codec
    default: Any = _EMPTY


@dataclass(frozen=True)
class Signature:
    parameters: Tuple[Parameter, ...]
    result: Codec | None


def _callable_name(func: Any) -> str:
    return getattr(func, "__qualname__", None) or getattr(func, "__name__", None) or repr(func)


def signature_of(func: Callable[..., Any], *, receiver: Any = None, context: BridgeContext | None = None) -> Signature:
    """Resolve parameter and result codecs of ``func`` from its annotations.

    With ``receiver`` set the first parameter is the receiver and is left out
    of the returned parameters.
    """
    label = _callable_name(func)
    try:
        hints = typing.get_type_hints(func)
        parameters = list(inspect.signature(func).parameters.values())
    except (NameError, TypeError, ValueError) as exc:
        raise BindingError(f"cannot bind '{label}': {exc}") from exc
    if receiver is not None:
        if not parameters:
            raise BindingError(f"method '{label}' must take the receiver as its first parameter")
        parameters = parameters[1:]
    resolved: List[Parameter] = []
    for parameter in parameters:
        if parameter.kind not in (parameter.POSITIONAL_ONLY, parameter.POSITIONAL_OR_KEYWORD):
            raise BindingError(f"parameter '{parameter.name}' of '{label}' must be positional")
        kind = hints.get(parameter.name)
        if kind is None:
            raise BindingError(f"parameter '{parameter.name}' of '{label}' has no type annotation")
        resolved.append(Parameter(parameter.name, codec_for(kind, context), parameter.default))
    result_kind = hints.get("return")
    result = None
    if result_kind is not None and result_kind is not type(None):
        result = codec_for(result_kind, context)
        result.check_returnable()
    return Signature(tuple(resolved), result)


def parameters_for(kinds: Sequence[Any], context: BridgeContext | None = None) -> Tuple[Parameter, ...]:
    """Parameters for an explicit list of kinds, as used by constructors."""
    return tuple(Parameter(f"arg{position}", codec_for(kind, context)) for position, kind in enumerate(kinds, 1))


def argument_error(state: LuaState, position: int, exc: LuaTypeError) -> NoReturn:
    state.arg_error(position, exc.message)


def read_arguments(state: LuaState, parameters: Sequence[Parameter], first: int = 1) -> List[Any]:
    args: List[Any] = []
    for position, parameter in enumerate(parameters, first):
        if parameter.default is not _EMPTY and state.is_none_or_nil(position):
            args.append(parameter.default)
            continue
        try:
            args.append(parameter.codec.read(state, position))
        except LuaTypeError as exc:
            argument_error(state, position, exc)
    return args


def read_receiver(state: LuaState, receiver: Codec, name: str) -> Any:
    try:
        return receiver.read(state, 1)
    except LuaTypeError as exc:
        state.error(f"calling '{name}' on bad self ({exc.message})")


def push_result(state: LuaState, result: Codec | None, value: Any) -> int:
    if result is None:
        return 0
    if value is None:
        state.push_nil()
    else:
        result.push(state, value)
    return 1


def invoke(state: LuaState, func: Callable[..., Any], args: Sequence[Any], result: Codec | None) -> int:
    """Call ``func`` and push its result; bridge errors become interpreter errors."""
    try:
        return push_result(state, result, func(*args))
    except BridgeError as exc:
        state.error(str(exc))


def wrap_function(func: Callable[..., Any], name: str, context: BridgeContext | None = None) -> HostFunction:
    signature = signature_of(func, context=context)

    def host_function(state: LuaState) -> int:
        args = read_arguments(state, signature.parameters)
        return invoke(state, func, args, signature.result)

    host_function.__name__ = name
    return host_function


def wrap_method(cls: type, func: Callable[..., Any], name: str, context: BridgeContext) -> HostFunction:
    """Wrap ``func(receiver, ...)``; the receiver is argument #1 and must be a ``cls`` instance."""
    receiver = codec_for(cls, context)
    signature = signature_of(func, receiver=cls, context=context)

    def host_method(state: LuaState) -> int:
        instance = read_receiver(state, receiver, name)
        args = read_arguments(state, signature.parameters, first=2)
        return invoke(state, func, [instance, *args], signature.result)

    host_method.__name__ = name
    return host_method


def register_function(state: LuaState, name: str, func: Callable[..., Any]) -> None:
    """Expose ``func`` as the global function ``name``."""
    state.push_closure(wrap_function(func, name, find_context(state)), 0, name)
    state.set_global(name)
    logger.debug("registered function '%s'", name)


def call_pushed(state: LuaState, nargs: int, returns: Any) -> Any:
    """Call the function below ``nargs`` pushed arguments with a zero- or one-result shape."""
    if returns is None:
        state.call(nargs, 0)
        return None
    state.call(nargs, 1)
    return codec.read(state, -1, returns)


def call_function(state: LuaState, name: str, *args: Any, returns: Any = None) -> Any:
    """Call the global function ``name``; with ``returns`` set, read one result as that kind."""
    top = state.gettop()
    try:
        state.get_global(name)
        nargs = codec.push_all(state, *args)
        return call_pushed(state, nargs, returns)
    finally:
        state.settop(top)


def get_global(state: LuaState, name: str, kind: Any = None) -> Any:
    top = state.gettop()
    state.get_global(name)
    try:
        return codec.read(state, -1, kind)
    finally:
        state.settop(top)


def set_global(state: LuaState, name: str, value: Any) -> None:
    codec.push(state, value)
    state.set_global(name)


def has_global(state: LuaState, name: str, kind: Any = None) -> bool:
    """True when the global exists and reads as ``kind``; never raises for a mismatch."""
    if kind is None:
        top = state.gettop()
        present = state.get_global(name) is not LuaType.NIL
        state.settop(top)
        return present
    try:
        value = get_global(state, name, kind)
    except LuaTypeError:
        return False
    if isinstance(value, LuaRef):
        value.release()
    return True


__all__ = [
    "HostFunction",
    "Parameter",
    "Signature",
    "call_function",
    "call_pushed",
    "get_global",
    "has_global",
    "invoke",
    "parameters_for",
    "push_result",
    "read_arguments",
    "read_receiver",
    "register_function",
    "set_global",
    "signature_of",
    "wrap_function",
    "wrap_method",
]
