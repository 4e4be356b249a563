"""Exposing host classes to scripts.

:func:`register_type` creates, once per type name, a descriptor made of a
dispatch table (published as the global ``Name`` and used as the instances'
``__index``) and a metatable stored in the registry under ``Name``. The
returned :class:`TypeBuilder` fills both in::

    register_type(state, Vec).add_method("length", Vec.length).add_constructor(float, float)

Instances live in full userdata whose payload is the host object.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from lua_vm import LuaState, LuaTable, LuaType, LuaUserdata

from .calls import (
    HostFunction,
    argument_error,
    parameters_for,
    push_result,
    read_arguments,
    read_receiver,
    wrap_function,
    wrap_method,
)
from .codec import NativeCodec, codec_for, push, push_native
from .config import get_config
from .context import BridgeContext, get_context
from .errors import BindingError, BridgeError, LuaTypeError

logger = logging.getLogger(__name__)


class LuaObject:
    """Common base for bound classes; required when pointer safety is enabled."""

    __slots__ = ()


@dataclass(eq=False)
class RegisteredType:
    name: str
    cls: type
    namespace: LuaTable
    metatable: LuaTable
    pointer_safety: bool
    parent: RegisteredType | None = None
    members: dict = field(default_factory=dict)

    def derives_from(self, other: "RegisteredType") -> bool:
        current: RegisteredType | None = self
        while current is not None:
            if current is other:
                return True
            current = current.parent
        return False


# (host operator, metamethod, is comparison)
_OPERATORS = (
    ("__add__", "__add", False),
    ("__sub__", "__sub", False),
    ("__mul__", "__mul", False),
    ("__truediv__", "__div", False),
    ("__neg__", "__unm", False),
    ("__eq__", "__eq", True),
    ("__lt__", "__lt", True),
    ("__le__", "__le", True),
)


def _release_payload(state: LuaState) -> int:
    userdata = state.value_at(1)
    if isinstance(userdata, LuaUserdata) and userdata.value is not None:
        logger.debug("finalising %s instance", type(userdata.value).__name__)
        # Dropping the only reference lets Python run __del__ exactly once.
        userdata.value = None
    return 0


def _check_constructible(cls: type, count: int) -> None:
    try:
        signature = inspect.signature(cls)
    except (TypeError, ValueError):
        return
    try:
        signature.bind(*([None] * count))
    except TypeError as exc:
        raise BindingError(f"'{cls.__name__}' cannot be constructed from {count} argument(s): {exc}") from exc


def _active(method: Callable[..., "TypeBuilder"]) -> Callable[..., "TypeBuilder"]:
    def wrapper(self: "TypeBuilder", *args: Any, **kwargs: Any) -> "TypeBuilder":
        if not self.active:
            return self
        return method(self, *args, **kwargs)

    wrapper.__name__ = method.__name__
    wrapper.__doc__ = method.__doc__
    return wrapper


class TypeBuilder:
    """Fluent builder returned by :func:`register_type`.

    A builder returned for a name that was already registered is inert: every
    call is accepted and ignored.
    """

    def __init__(self, state: LuaState, descriptor: RegisteredType, context: BridgeContext, active: bool = True):
        self.state = state
        self.descriptor = descriptor
        self.context = context
        self.active = active

    @property
    def name(self) -> str:
        return self.descriptor.name

    def _install(self, table: LuaTable, key: str, fn: HostFunction, label: str) -> None:
        state = self.state
        state.push(table)
        state.push_closure(fn, 0, label)
        state.set_field(-2, key)
        state.pop()

    def _receiver(self) -> NativeCodec:
        return codec_for(self.descriptor.cls, self.context)

    # ------------------------------------------------------------------ construction
    @_active
    def add_constructor(self, *kinds: Any) -> "TypeBuilder":
        """Install ``Name.new(...)`` building the class from arguments of ``kinds``."""
        _check_constructible(self.descriptor.cls, len(kinds))
        self._install_constructor(parameters_for(kinds, self.context), allow_default=False)
        return self

    @_active
    def add_custom_and_default_constructors(self, *kinds: Any) -> "TypeBuilder":
        """Like :meth:`add_constructor`, but ``Name.new()`` with no arguments uses the default constructor."""
        _check_constructible(self.descriptor.cls, 0)
        _check_constructible(self.descriptor.cls, len(kinds))
        self._install_constructor(parameters_for(kinds, self.context), allow_default=True)
        return self

    def _install_constructor(self, parameters: Sequence[Any], allow_default: bool) -> None:
        descriptor = self.descriptor

        def construct(state: LuaState) -> int:
            if allow_default and state.gettop() == 0:
                args = []
            else:
                args = read_arguments(state, parameters)
            push_native(state, descriptor, descriptor.cls(*args))
            return 1

        self._install(descriptor.namespace, "new", construct, "new")
        logger.debug("constructor for '%s' takes %d argument(s)", descriptor.name, len(parameters))

    # ------------------------------------------------------------------ methods
    @_active
    def add_method(self, name: str, func: Callable[..., Any]) -> "TypeBuilder":
        """Bind ``func(receiver, ...)`` as ``obj:name(...)``."""
        fn = wrap_method(self.descriptor.cls, func, name, self.context)
        self._install(self.descriptor.namespace, name, fn, name)
        return self

    @_active
    def add_metamethod(self, name: str, func: Callable[..., Any]) -> "TypeBuilder":
        """Bind ``func(receiver, ...)`` as the metamethod ``name`` (``__tostring``, ``__len`` ...)."""
        if not name.startswith("__"):
            raise BindingError(f"metamethod name '{name}' must start with '__'")
        fn = wrap_method(self.descriptor.cls, func, name, self.context)
        self._install(self.descriptor.metatable, name, fn, name)
        return self

    @_active
    def add_static_method(self, name: str, func: Callable[..., Any]) -> "TypeBuilder":
        """Bind a plain function as ``Name.name(...)``."""
        fn = wrap_function(func, name, self.context)
        self._install(self.descriptor.namespace, name, fn, name)
        return self

    @_active
    def add_member(self, name: str, kind: Any) -> "TypeBuilder":
        """Bind attribute ``name``: ``obj:name()`` reads it, ``obj:name(value)`` writes it."""
        value_codec = codec_for(kind, self.context)
        value_codec.check_returnable()
        receiver = self._receiver()
        parameters = parameters_for([kind], self.context)

        def member(state: LuaState) -> int:
            instance = read_receiver(state, receiver, name)
            if state.gettop() <= 1:
                return push_result(state, value_codec, getattr(instance, name))
            (value,) = read_arguments(state, parameters, first=2)
            setattr(instance, name, value)
            return 0

        self.descriptor.members[name] = kind
        self._install(self.descriptor.namespace, name, member, name)
        return self

    @_active
    def add_detected_operators(self) -> "TypeBuilder":
        """Install arithmetic and comparison metamethods for the operators the class defines."""
        cls = self.descriptor.cls
        for dunder, event, comparison in _OPERATORS:
            impl = getattr(cls, dunder, None)
            if impl is None or impl is getattr(object, dunder, None):
                continue
            self._install(self.descriptor.metatable, event, self._operator(impl, event, comparison), event)
            logger.debug("'%s' supports %s", self.descriptor.name, event)
        return self

    def _operator(self, impl: Callable[..., Any], event: str, comparison: bool) -> HostFunction:
        operand = self._receiver()
        unary = event == "__unm"

        def operator(state: LuaState) -> int:
            operands = []
            for position in ((1,) if unary else (1, 2)):
                try:
                    operands.append(operand.read(state, position))
                except LuaTypeError as exc:
                    argument_error(state, position, exc)
            result = impl(*operands)
            if result is NotImplemented:
                state.error(f"'{event}' is not supported between these '{self.descriptor.name}' values")
            if comparison:
                state.push_boolean(bool(result))
                return 1
            try:
                push(state, result)
            except BridgeError as exc:
                state.error(str(exc))
            return 1

        return operator

    # ------------------------------------------------------------------ inheritance
    @_active
    def add_parent_type(self, parent: type | str) -> "TypeBuilder":
        """Let lookups that miss this type's dispatch table fall through to ``parent``'s."""
        if isinstance(parent, type):
            parent_descriptor = self.context.types_by_class.get(parent)
            label = parent.__name__
        else:
            parent_descriptor = self.context.types.get(parent)
            label = parent
        if parent_descriptor is None:
            raise BindingError(f"parent type '{label}' is not registered")
        if parent_descriptor is self.descriptor or not issubclass(self.descriptor.cls, parent_descriptor.cls):
            raise BindingError(f"'{self.descriptor.name}' does not derive from '{parent_descriptor.name}'")
        self.descriptor.parent = parent_descriptor
        state = self.state
        state.push(self.descriptor.namespace)
        state.new_table()
        state.push(parent_descriptor.namespace)
        state.set_field(-2, "__index")
        state.set_metatable(-2)
        state.pop()
        logger.debug("'%s' inherits from '%s'", self.descriptor.name, parent_descriptor.name)
        return self


def register_type(state: LuaState, cls: type, name: str | None = None) -> TypeBuilder:
    """Create the descriptor for ``cls`` under ``name`` (default ``cls.__name__``)."""
    context = get_context(state)
    name = name or cls.__name__
    existing = context.types.get(name)
    if existing is not None:
        logger.debug("type '%s' is already registered", name)
        return TypeBuilder(state, existing, context, active=False)
    pointer_safety = get_config().pointer_safety
    if pointer_safety and not issubclass(cls, LuaObject):
        raise BindingError(f"'{cls.__name__}' must derive from LuaObject when pointer safety is enabled")
    if not state.new_metatable(name):
        state.pop()
        raise BindingError(f"the registry name '{name}' is already in use")
    metatable = state.value_at(-1)
    state.new_table()
    namespace = state.value_at(-1)
    state.set_field(-2, "__index")
    if hasattr(cls, "__del__"):
        state.push_closure(_release_payload, 0, "__gc")
        state.set_field(-2, "__gc")
    state.pop()
    state.push(namespace)
    state.set_global(name)
    descriptor = RegisteredType(name, cls, namespace, metatable, pointer_safety)
    context.types[name] = descriptor
    context.types_by_class[cls] = descriptor
    logger.debug("registered type '%s' (pointer safety %s)", name, "on" if pointer_safety else "off")
    return TypeBuilder(state, descriptor, context)


def register_type_function(state: LuaState) -> None:
    """Replace the global ``type`` so instances of registered types report their type name."""
    context = get_context(state)
    state.get_global("type")
    original = state.value_at(-1)
    state.pop()

    def lua_type(state: LuaState) -> int:
        if state.type(1) is LuaType.USERDATA:
            userdata = state.value_at(1)
            descriptor = context.descriptor_for_metatable(getattr(userdata, "metatable", None))
            if descriptor is not None:
                state.push_string(descriptor.name)
                return 1
        if original is None:
            state.push_string(state.typename_at(1))
            return 1
        nargs = 1 if state.gettop() >= 1 else 0
        state.push(original)
        if nargs:
            state.push_value(1)
        state.call(nargs, 1)
        return 1

    state.push_closure(lua_type, 0, "type")
    state.set_global("type")


__all__ = ["LuaObject", "RegisteredType", "TypeBuilder", "register_type", "register_type_function"]
