from __future__ import annotations

import gc
import math
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lua_bridge import (
    BindingError,
    Libs,
    execute_string,
    get_global,
    new_state,
    register_function,
    register_type,
    register_type_function,
)
from lua_vm import LuaRuntimeError


class Vec:
    def __init__(self, x: float = 0.0, y: float = 0.0):
        self.x = x
        self.y = y

    def length(self) -> float:
        return math.hypot(self.x, self.y)

    def scale(self, factor: float) -> None:
        self.x *= factor
        self.y *= factor

    def describe(self) -> str:
        return f"Vec({self.x:g}, {self.y:g})"

    def __add__(self, other):
        return Vec(self.x + other.x, self.y + other.y)

    def __sub__(self, other):
        return Vec(self.x - other.x, self.y - other.y)

    def __neg__(self):
        return Vec(-self.x, -self.y)

    def __eq__(self, other):
        return isinstance(other, Vec) and (self.x, self.y) == (other.x, other.y)

    def __lt__(self, other):
        return self.length() < other.length()

    @staticmethod
    def unit() -> Vec:
        return Vec(1.0, 0.0)


class Animal:
    def __init__(self, name: str = "animal"):
        self.name = name

    def speak(self) -> str:
        return "..."

    def describe(self) -> str:
        return f"{self.name} says {self.speak()}"


class Dog(Animal):
    def speak(self) -> str:
        return "woof"


class Stone:
    pass


CLOSED = []


class Resource:
    def __init__(self, tag: str):
        self.tag = tag

    def __del__(self):
        CLOSED.append(self.tag)


class Singleton:
    __copy__ = None

    def value(self) -> float:
        return 1.0


@pytest.fixture
def state():
    lua = new_state(Libs.ALL, output=[])
    register_type_function(lua)
    yield lua
    lua.close()


def _register_vec(state):
    return (
        register_type(state, Vec)
        .add_method("length", Vec.length)
        .add_method("scale", Vec.scale)
        .add_member("x", float)
        .add_member("y", float)
        .add_metamethod("__tostring", Vec.describe)
        .add_static_method("unit", Vec.unit)
        .add_detected_operators()
        .add_custom_and_default_constructors(float, float)
    )


def _register_animals(state):
    register_type(state, Animal).add_method("speak", Animal.speak).add_method(
        "describe", Animal.describe
    ).add_constructor(str)
    register_type(state, Dog).add_method("speak", Dog.speak).add_parent_type(Animal).add_constructor(str)


def test_constructor_and_methods(state):
    _register_vec(state)
    assert execute_string(state, "local v = Vec.new(3, 4) return v:length()") == [5.0]
    assert execute_string(state, "local v = Vec.new(1, 2) v:scale(3) return v:x(), v:y()") == [3.0, 6.0]


def test_default_constructor_when_no_arguments(state):
    _register_vec(state)
    assert execute_string(state, "local v = Vec.new() return v:x(), v:y()") == [0.0, 0.0]


def test_member_getter_and_setter(state):
    _register_vec(state)
    result = execute_string(
        state,
        """
        local v = Vec.new(1, 2)
        v:x(10)
        return v:x(), v:length() > 10
        """,
    )
    assert result == [10.0, True]


def test_instances_read_back_as_the_host_object(state):
    _register_vec(state)
    execute_string(state, "v = Vec.new(5, 6)")
    vec = get_global(state, "v", Vec)
    assert isinstance(vec, Vec)
    assert (vec.x, vec.y) == (5.0, 6.0)
    vec.x = 1.0
    assert execute_string(state, "return v:x()") == [1.0]


def test_static_method_and_tostring(state):
    _register_vec(state)
    assert execute_string(state, "return tostring(Vec.unit())") == ["Vec(1, 0)"]


def test_detected_operators(state):
    _register_vec(state)
    result = execute_string(
        state,
        """
        local a = Vec.new(1, 2) + Vec.new(3, 4)
        local b = Vec.new(5, 5) - Vec.new(1, 2)
        local c = -Vec.new(1, 2)
        return a:x(), a:y(), b:x(), b:y(), c:x(), c:y(),
            Vec.new(1, 1) == Vec.new(1, 1), Vec.new(1, 1) == Vec.new(2, 2),
            Vec.new(1, 1) < Vec.new(3, 4)
        """,
    )
    assert result == [4.0, 6.0, 4.0, 3.0, -1.0, -2.0, True, False, True]


def test_undefined_operators_are_not_installed(state):
    _register_vec(state)
    ok, message = execute_string(state, "return pcall(function() return Vec.new() * Vec.new() end)")
    assert ok is False
    assert "attempt to perform arithmetic" in message


def test_type_function_reports_registered_names(state):
    _register_vec(state)
    assert execute_string(state, "return type(Vec.new()), type(1), type({}), type(print)") == [
        "Vec",
        "number",
        "table",
        "function",
    ]


def test_method_argument_errors(state):
    _register_vec(state)
    ok, message = execute_string(state, "return pcall(function() Vec.new(1, 2):scale('x') end)")
    assert ok is False
    assert "bad argument #2 to 'scale' (number expected, got string)" in message


def test_constructor_argument_errors(state):
    _register_vec(state)
    ok, message = execute_string(state, "return pcall(Vec.new, 1, true)")
    assert ok is False
    assert "bad argument #2 to 'new' (number expected, got boolean)" in message


def test_bad_receiver_is_reported(state):
    _register_vec(state)
    _register_animals(state)
    ok, message = execute_string(state, "return pcall(Animal.speak, Vec.new())")
    assert ok is False
    assert "calling 'speak' on bad self (Animal expected, got Vec)" in message
    ok, message = execute_string(state, "return pcall(Animal.speak, 12)")
    assert "calling 'speak' on bad self (Animal expected, got number)" in message


def test_parent_methods_resolve_through_derived_instances(state):
    _register_animals(state)
    result = execute_string(
        state,
        """
        local dog = Dog.new("rex")
        local cat = Animal.new("tom")
        return dog:describe(), dog:speak(), cat:speak(), type(dog)
        """,
    )
    assert result == ["rex says woof", "woof", "...", "Dog"]


def test_parent_must_be_registered_and_a_base(state):
    register_type(state, Stone)
    with pytest.raises(BindingError, match="not registered"):
        register_type(state, Dog).add_parent_type(Animal)
    with pytest.raises(BindingError, match="does not derive"):
        register_type(state, Animal).add_parent_type("Stone")


def test_registration_is_idempotent(state):
    first = _register_vec(state)
    namespace = first.descriptor.namespace
    second = register_type(state, Vec).add_method("extra", Vec.length)
    assert second.descriptor is first.descriptor
    assert execute_string(state, "return Vec.extra") == [None]
    assert first.descriptor.namespace is namespace
    assert not second.active


def test_name_already_used_in_registry(state):
    state.new_metatable("Taken")
    state.pop()
    with pytest.raises(BindingError, match="already in use"):
        register_type(state, Stone, "Taken")


def test_custom_type_name(state):
    register_type(state, Stone, "Rock").add_constructor()
    assert execute_string(state, "return type(Rock.new())") == ["Rock"]


def test_constructor_arity_is_checked_at_bind_time(state):
    with pytest.raises(BindingError, match="cannot be constructed"):
        register_type(state, Resource).add_constructor(str, str)


def test_values_returned_to_scripts_are_copies(state):
    _register_vec(state)

    def mirror(v: Vec) -> Vec:
        return v

    register_function(state, "mirror", mirror)
    result = execute_string(
        state,
        """
        local a = Vec.new(1, 2)
        local b = mirror(a)
        b:x(9)
        return a:x(), b:x(), rawequal(a, b)
        """,
    )
    assert result == [1.0, 9.0, False]


def test_types_that_refuse_copies_cannot_be_returned(state):
    register_type(state, Singleton).add_method("value", Singleton.value)

    def make() -> Singleton:
        return Singleton()

    with pytest.raises(BindingError, match="cannot be passed by value"):
        register_function(state, "make", make)
    with pytest.raises(BindingError):
        register_type(state, Vec).add_member("other", Singleton)


def test_unregistered_kinds_fail_at_bind_time(state):
    def takes_stone(s: Stone) -> None:
        return None

    with pytest.raises(BindingError, match="register the type first"):
        register_function(state, "takes_stone", takes_stone)


def test_unannotated_parameters_fail_at_bind_time(state):
    def untyped(a) -> float:
        return a

    with pytest.raises(BindingError, match="no type annotation"):
        register_function(state, "untyped", untyped)


def test_destructor_runs_once_when_collected(state):
    CLOSED.clear()
    register_type(state, Resource).add_constructor(str)
    execute_string(state, "res = Resource.new('collected')")
    execute_string(state, "res = nil")
    gc.collect()
    assert CLOSED == ["collected"]
    state.close()
    assert CLOSED == ["collected"]


def test_destructor_runs_on_close():
    CLOSED.clear()
    lua = new_state(Libs.ALL)
    register_type(lua, Resource).add_constructor(str)
    execute_string(lua, "keep = Resource.new('closing')")
    assert CLOSED == []
    lua.close()
    assert CLOSED == ["closing"]


def test_types_without_del_have_no_gc(state):
    builder = _register_vec(state)
    assert builder.descriptor.metatable.raw_get("__gc") is None
    resource = register_type(state, Resource)
    assert resource.descriptor.metatable.raw_get("__gc") is not None


def test_script_errors_inside_methods_keep_their_message(state):
    _register_vec(state)
    with pytest.raises(LuaRuntimeError, match="attempt to call a nil value"):
        execute_string(state, "Vec.new():missing()")
