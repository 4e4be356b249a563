import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lua_bridge import (
    Function,
    Libs,
    LuaTypeError,
    Table,
    call_function,
    execute_string,
    execute_string_safe,
    get_global,
    has_global,
    new_state,
    pop_error_message,
    register_function,
    register_type_function,
    set_global,
)
from lua_vm import LuaStatus


@pytest.fixture
def state():
    lua = new_state(Libs.ALL, output=[])
    register_type_function(lua)
    yield lua
    lua.close()


def test_globals_cross_in_both_directions(state):
    set_global(state, "num", 22)
    set_global(state, "str", "host string")
    execute_string(
        state,
        """
        assert(num == 22)
        assert(str == "host string")
        lua_num = 17
        lua_str = "Lua string"
        """,
    )
    assert get_global(state, "lua_num", float) == 17
    assert get_global(state, "lua_str", str) == "Lua string"
    assert state.gettop() == 0


def test_registered_function_is_callable_from_scripts(state):
    def add2(a: float, b: float) -> float:
        return (a + b) * 2

    register_function(state, "add2", add2)
    assert execute_string(state, "return add2(3, 4)") == [14]
    execute_string(
        state,
        """
        assert(add2(3, 4) == (3 + 4) * 2)
        function lua_func(a)
            return 512 + a
        end
        """,
    )
    assert call_function(state, "lua_func", 10.0, returns=float) == 522


def test_call_function_without_result_runs_for_effect(state):
    execute_string(state, "calls = 0 function bump(n) calls = calls + n end")
    assert call_function(state, "bump", 2) is None
    assert call_function(state, "bump", 3) is None
    assert get_global(state, "calls", int) == 5
    assert state.gettop() == 0


def test_function_handles_and_closures(state):
    execute_string(
        state,
        """
        function func(a, b, c)
            return "Res = "..(a + b + c)
        end

        function closure(num)
            local num = 7
            return (function()
                num = num + 1
                return num
            end)
        end
        """,
    )
    func = get_global(state, "func", Function)
    assert func.call(1, 2, 3, returns=str) == "Res = 6.0"

    closure = get_global(state, "closure", Function)
    inner = closure.call(returns=Function)
    assert [inner.call(returns=int) for _ in range(3)] == [8, 9, 10]
    assert inner(returns=int) == 11


def test_reading_the_wrong_kind_raises_with_expected_kind(state):
    execute_string(state, "num = 7")
    with pytest.raises(LuaTypeError) as info:
        get_global(state, "num", bool)
    assert info.value.expected == "bool"
    assert str(info.value) == "boolean expected, got number"
    assert state.gettop() == 0


def test_missing_global_reads_as_nil_mismatch(state):
    with pytest.raises(LuaTypeError, match="number expected, got nil"):
        get_global(state, "nothing_here", float)
    assert get_global(state, "nothing_here") is None


def test_bad_argument_becomes_script_error(state):
    def c_func(a: int) -> int:
        return a + a

    register_function(state, "c_func", c_func)
    assert execute_string_safe(state, "c_func('String')") is LuaStatus.ERRRUN
    assert pop_error_message(state) == (
        "[string \"c_func('String')\"]:1: bad argument #1 to 'c_func' (number expected, got string)"
    )
    assert state.gettop() == 0


def test_bad_argument_is_catchable_with_pcall(state):
    def twice(text: str, count: int) -> str:
        return text * count

    register_function(state, "twice", twice)
    ok, message = execute_string(state, "return pcall(twice, 'ab', {})")
    assert ok is False
    assert "bad argument #2 to 'twice' (number expected, got table)" in message
    assert execute_string(state, "return twice('ab', '3')") == ["ababab"]


def test_missing_argument_reports_no_value(state):
    def need(a: float) -> float:
        return a

    register_function(state, "need", need)
    ok, message = execute_string(state, "return pcall(need)")
    assert ok is False
    assert message.endswith("bad argument #1 to 'need' (number expected, got no value)")


def test_default_values_fill_missing_arguments(state):
    def greet(name: str, punctuation: str = "!") -> str:
        return f"hello {name}{punctuation}"

    register_function(state, "greet", greet)
    assert execute_string(state, "return greet('lua'), greet('lua', '?')") == ["hello lua!", "hello lua?"]


def test_host_function_without_result_returns_nothing(state):
    seen = []

    def record(value: str) -> None:
        seen.append(value)

    register_function(state, "record", record)
    assert execute_string(state, "return select('#', record('x'))") == [0]
    assert seen == ["x"]


def test_host_errors_propagate_out_of_scripts(state):
    def explode() -> None:
        raise ValueError("boom")

    register_function(state, "explode", explode)
    ok, message = execute_string(state, "return pcall(explode)")
    assert ok is False
    assert "boom" in message


def test_has_global_checks_without_raising(state):
    execute_string(state, "num = 3 t = {} f = print")
    assert has_global(state, "num")
    assert has_global(state, "num", float)
    assert not has_global(state, "num", bool)
    assert has_global(state, "t", Table)
    assert not has_global(state, "missing")
    assert has_global(state, "f", Function)
    assert state.gettop() == 0


def test_oversized_results_become_script_errors(state):
    def huge() -> int:
        return 10**400

    register_function(state, "huge", huge)
    ok, message = execute_string(state, "return pcall(huge)")
    assert ok is False
    assert "too large for a number" in message
    assert state.gettop() == 0
