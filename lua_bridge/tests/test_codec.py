import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lua_bridge import (
    BindingError,
    BridgeConfig,
    Libs,
    LuaObject,
    LuaTypeError,
    Pointer,
    configure,
    get_config,
    new_state,
    push,
    push_all,
    read,
    read_any,
    register_type,
    reset_config,
)
from lua_bridge.codec import codec_for, push_native
from lua_bridge.config import POINTER_SAFETY_ENV


class Point:
    def __init__(self, x=0, y=0):
        self.x = x
        self.y = y

    def __eq__(self, other):
        return isinstance(other, Point) and (self.x, self.y) == (other.x, other.y)


class Shape(LuaObject):
    def __init__(self, sides=3):
        self.sides = sides


class Square(Shape):
    def __init__(self):
        super().__init__(4)


@pytest.fixture
def state():
    lua = new_state(Libs.BASE)
    yield lua
    lua.close()


@pytest.fixture
def config_reset():
    reset_config()
    yield
    reset_config()


@pytest.mark.parametrize(
    "value, kind",
    [(True, bool), (False, bool), (2.5, float), (-7, int), ("héllo\0world", str)],
)
def test_simple_values_round_trip(state, value, kind):
    push(state, value)
    assert read(state, -1, kind) == value
    assert type(read(state, -1, kind)) is kind


def test_numbers_are_pushed_as_doubles(state):
    push(state, 3)
    assert state.value_at(-1) == 3.0
    assert isinstance(state.value_at(-1), float)


def test_integer_reads_truncate(state):
    push_all(state, 2.7, -2.7, "12")
    assert read(state, 1, int) == 2
    assert read(state, 2, int) == -2
    assert read(state, 3, int) == 12


def test_integer_read_of_non_finite_number(state):
    push(state, float("inf"))
    with pytest.raises(LuaTypeError, match="no integer representation"):
        read(state, -1, int)


def test_numbers_read_as_strings(state):
    push(state, 4.0)
    state.push_integer(5)
    assert read(state, 1, str) == "4.0"
    assert read(state, 2, str) == "5"


def test_mismatches_name_both_kinds(state):
    push(state, "text")
    with pytest.raises(LuaTypeError) as info:
        read(state, 1, float)
    assert info.value.expected == "float"
    assert info.value.message == "number expected, got string"
    with pytest.raises(LuaTypeError, match="boolean expected, got no value"):
        read(state, 5, bool)
    with pytest.raises(LuaTypeError, match="string expected, got nil"):
        state.push_nil()
        read(state, -1, str)


def test_pointer_identity_survives(state):
    target = object()
    push(state, Pointer(target))
    assert state.is_light_userdata(-1)
    pointer = read(state, -1, Pointer)
    assert pointer == Pointer(target)
    assert pointer.target is target
    assert read_any(state, -1).target is target
    assert Pointer(target) != Pointer(object())


def test_read_any_covers_every_kind(state):
    state.push_nil()
    push_all(state, True, 1.5, "s")
    assert [read_any(state, i) for i in range(1, 5)] == [None, True, 1.5, "s"]
    assert read_any(state, 10) is None


def test_native_values_round_trip_by_copy(state):
    register_type(state, Point)
    original = Point(1, 2)
    push(state, original)
    restored = read(state, -1, Point)
    assert restored == original
    assert restored is not original


def test_unknown_kinds_are_rejected(state):
    with pytest.raises(BindingError):
        codec_for(Point)
    with pytest.raises(BindingError):
        codec_for(list)
    with pytest.raises(BindingError, match="cannot push"):
        push(state, [1, 2])


def test_native_read_rejects_other_types(state):
    register_type(state, Point)
    push(state, 1.0)
    state.new_table()
    with pytest.raises(LuaTypeError, match="Point expected, got number"):
        read(state, 1, Point)
    with pytest.raises(LuaTypeError, match="Point expected, got table"):
        read(state, 2, Point)


def test_config_from_environment(caplog):
    assert BridgeConfig.from_env({}).pointer_safety is False
    assert BridgeConfig.from_env({POINTER_SAFETY_ENV: "Yes"}).pointer_safety is True
    assert BridgeConfig.from_env({POINTER_SAFETY_ENV: "off"}).pointer_safety is False
    with caplog.at_level("WARNING"):
        assert BridgeConfig.from_env({POINTER_SAFETY_ENV: "maybe"}).pointer_safety is False
    assert POINTER_SAFETY_ENV in caplog.text


def test_configure_replaces_the_active_config(config_reset, monkeypatch):
    monkeypatch.setenv(POINTER_SAFETY_ENV, "1")
    assert get_config().pointer_safety is True
    assert configure(pointer_safety=False).pointer_safety is False
    assert get_config().pointer_safety is False


def test_pointer_safety_requires_a_common_base(state, config_reset):
    configure(pointer_safety=True)
    with pytest.raises(BindingError, match="LuaObject"):
        register_type(state, Point)
    builder = register_type(state, Shape)
    assert builder.descriptor.pointer_safety is True


def test_pointer_safety_reads_with_isinstance(state, config_reset):
    configure(pointer_safety=True)
    shape = register_type(state, Shape).descriptor
    push_native(state, shape, Square())
    assert read(state, -1, Shape).sides == 4
    push(state, "not a shape")
    with pytest.raises(LuaTypeError, match="Shape expected, got string"):
        read(state, -1, Shape)


def test_policy_is_captured_at_registration(state, config_reset):
    configure(pointer_safety=False)
    descriptor = register_type(state, Shape).descriptor
    configure(pointer_safety=True)
    assert descriptor.pointer_safety is False


def test_type_errors_name_the_requested_host_kind(state):
    register_type(state, Point)
    push(state, "text")
    with pytest.raises(LuaTypeError) as info:
        read(state, 1, Point)
    assert info.value.expected == "Point"
    with pytest.raises(LuaTypeError) as info:
        read(state, 1, int)
    assert info.value.expected == "int"
    assert str(info.value) == "number expected, got string"


def test_integers_beyond_double_range_are_rejected(state):
    with pytest.raises(LuaTypeError, match="too large") as info:
        push(state, 10**400)
    assert info.value.expected == "int"
    with pytest.raises(LuaTypeError, match="too large"):
        codec_for(int).push(state, -(10**400))
    assert state.gettop() == 0
    push(state, 2**53)
    assert read(state, 1, int) == 2**53
