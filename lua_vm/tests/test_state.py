import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lua_vm import MULTRET, REGISTRY_INDEX, LuaRuntimeError, LuaState, LuaStatus, LuaType


@pytest.fixture
def state():
    output = []
    with LuaState(output=output) as lua:
        lua.open_libs()
        yield lua


def test_push_and_query_stack(state):
    state.push_nil()
    state.push_boolean(True)
    state.push_integer(7)
    state.push_number(1.5)
    state.push_string("text")
    assert state.gettop() == 5
    assert [state.type(i) for i in range(1, 6)] == [
        LuaType.NIL,
        LuaType.BOOLEAN,
        LuaType.NUMBER,
        LuaType.NUMBER,
        LuaType.STRING,
    ]
    assert state.type(6) == LuaType.NONE
    assert state.typename_at(-1) == "string"
    assert state.is_integer(3) and not state.is_integer(4)
    assert state.to_integer(3) == 7
    assert state.to_number(-2) == 1.5
    assert state.to_string(3) == "7"
    assert state.to_boolean(1) is False


def test_settop_insert_remove(state):
    for value in (1, 2, 3):
        state.push_integer(value)
    state.push_integer(0)
    state.insert(1)
    assert [state.value_at(i) for i in range(1, 5)] == [0, 1, 2, 3]
    state.remove(2)
    assert [state.value_at(i) for i in range(1, 4)] == [0, 2, 3]
    state.settop(5)
    assert state.gettop() == 5 and state.is_nil(5)
    state.pop(4)
    assert state.gettop() == 1
    assert state.absindex(-1) == 1


def test_tables_fields_and_raw_access(state):
    state.new_table()
    state.push_integer(10)
    state.set_field(-2, "x")
    state.push_string("one")
    state.raw_set_i(-2, 1)
    state.push_string("key")
    state.push_string("value")
    state.set_table(-3)
    assert state.get_field(-1, "x") == LuaType.NUMBER
    assert state.to_integer(-1) == 10
    state.pop()
    assert state.raw_get_i(-1, 1) == LuaType.STRING
    state.pop()
    state.push_string("key")
    assert state.get_table(-2) == LuaType.STRING
    assert state.to_string(-1) == "value"
    state.pop()
    assert state.raw_len(-1) == 1


def test_next_walks_table(state):
    state.do_string("return {a = 1, b = 2}")
    seen = {}
    state.push_nil()
    while state.next(-2):
        seen[state.to_string(-2)] = state.to_integer(-1)
        state.pop()
    assert seen == {"a": 1, "b": 2}


def test_globals_round_trip(state):
    state.push_integer(42)
    state.set_global("answer")
    assert state.do_string("return answer + 1") == LuaStatus.OK
    assert state.to_integer(-1) == 43
    assert state.get_global("missing") == LuaType.NIL


def test_registry_pointer_slots(state):
    anchor = object()
    state.push_string("stored")
    state.raw_set_p(REGISTRY_INDEX, anchor)
    assert state.raw_get_p(REGISTRY_INDEX, anchor) == LuaType.STRING
    assert state.to_string(-1) == "stored"
    assert state.raw_get_p(REGISTRY_INDEX, object()) == LuaType.NIL


def test_call_host_function_from_lua(state):
    def add(lua):
        a = lua.to_number(1)
        b = lua.to_number(2)
        lua.push(a + b)
        return 1

    state.push_function(add, "add")
    state.set_global("add")
    assert state.do_string("return add(2, 3) * 2") == LuaStatus.OK
    assert state.to_integer(-1) == 10


def test_closure_upvalues(state):
    def counter(lua):
        count = lua.upvalue(1)
        lua.push_integer(count + lua.to_integer(1))
        return 1

    state.push_integer(100)
    state.push_closure(counter, 1, "counter")
    state.set_global("counter")
    state.do_string("return counter(5)")
    assert state.to_integer(-1) == 105


def test_call_lua_function_with_results(state):
    state.do_string("function split(a) return a, a * 2, a * 3 end")
    state.get_global("split")
    state.push_integer(2)
    state.call(1, 2)
    assert state.gettop() == 2
    assert (state.to_integer(1), state.to_integer(2)) == (2, 4)
    state.settop(0)
    state.get_global("split")
    state.push_integer(1)
    state.call(1, MULTRET)
    assert state.gettop() == 3


def test_pcall_reports_runtime_error(state):
    state.load_string("error('broken')", "=host")
    assert state.pcall(0, 0) == LuaStatus.ERRRUN
    assert state.to_string(-1) == "host:1: broken"


def test_load_string_reports_syntax_error(state):
    assert state.load_string("local = 3", "=snippet") == LuaStatus.ERRSYNTAX
    assert state.to_string(-1).startswith("snippet:1:")


def test_host_errors_are_positioned_at_caller(state):
    def strict(lua):
        if not lua.is_number(1):
            lua.type_error(1, "number")
        return 0

    state.push_function(strict, "strict")
    state.set_global("strict")
    assert state.do_string("strict('no')", "=caller") == LuaStatus.ERRRUN
    assert state.to_string(-1) == "caller:1: bad argument #1 to 'strict' (number expected, got string)"


def test_host_error_propagates_out_of_call(state):
    def fail(lua):
        lua.error("host failure")

    state.push_function(fail, "fail")
    with pytest.raises(LuaRuntimeError) as excinfo:
        state.call(0, 0)
    assert str(excinfo.value) == "host failure"


def test_named_metatables_and_userdata(state):
    assert state.new_metatable("Point") is True
    state.pop()
    assert state.new_metatable("Point") is False
    state.pop()
    state.new_userdata({"x": 1})
    state.get_named_metatable("Point")
    state.set_metatable(-2)
    assert state.type(-1) == LuaType.USERDATA
    assert state.test_userdata(-1, "Point") == {"x": 1}
    assert state.test_userdata(-1, "Other") is None
    state.push_integer(3)
    with pytest.raises(LuaRuntimeError):
        state.check_userdata(-1, "Point")


def test_light_userdata_identity(state):
    token = object()
    state.push_light_userdata(token)
    state.push_light_userdata(token)
    assert state.is_light_userdata(-1)
    assert state.raw_equal(-1, -2)
    assert state.to_userdata(-1) is token


def test_print_goes_to_state_output():
    output = []
    with LuaState(output=output) as lua:
        lua.open_libs()
        lua.do_string("print('from lua')")
    assert output == ["from lua"]


def test_unknown_library_name():
    with LuaState() as lua:
        with pytest.raises(ValueError):
            lua.open_library("sockets")
