import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lua_bridge import (
    BridgeNotInitialized,
    Function,
    Libs,
    execute_string,
    execute_string_safe,
    get_context,
    get_stack_size,
    has_global,
    init,
    new_state,
    open_libraries,
    pop_error_message,
    register_function,
    stack_pop,
    stack_remove,
)
from lua_vm import LuaRuntimeError, LuaState, LuaStatus, LuaSyntaxError


@pytest.fixture
def state():
    lua = new_state(Libs.ALL, output=[])
    yield lua
    lua.close()


def test_execute_string_returns_results(state):
    assert execute_string(state, "return 1, 'two', nil, true") == [1, "two", None, True]
    assert get_stack_size(state) == 0


def test_execute_string_raises_script_errors(state):
    with pytest.raises(LuaRuntimeError, match=r'\[string "error\(\'bad\'\)"\]:1: bad'):
        execute_string(state, "error('bad')")
    with pytest.raises(LuaSyntaxError, match="chunk:1:"):
        execute_string(state, "local = 1", "=chunk")
    assert get_stack_size(state) == 0


def test_execute_string_safe_leaves_the_message(state):
    assert execute_string_safe(state, "x = ") is LuaStatus.ERRSYNTAX
    assert pop_error_message(state).startswith('[string "x = "]:1:')
    assert execute_string_safe(state, "error('failed')") is LuaStatus.ERRRUN
    assert pop_error_message(state).endswith("failed")
    assert get_stack_size(state) == 0
    assert execute_string_safe(state, "return 5") is LuaStatus.OK
    assert get_stack_size(state) == 1


def test_pop_error_message_ignores_non_strings(state):
    state.push_integer(3)
    assert pop_error_message(state) == ""
    assert get_stack_size(state) == 1
    assert execute_string_safe(state, "error({code = 1})") is LuaStatus.ERRRUN
    assert pop_error_message(state) == ""


def test_stack_helpers(state):
    for value in (1, 2, 3, 4):
        state.push_integer(value)
    stack_remove(state, 2)
    assert [state.value_at(i) for i in range(1, 4)] == [1, 3, 4]
    stack_pop(state, 2)
    assert get_stack_size(state) == 1


def test_print_goes_to_the_configured_output(state):
    execute_string(state, "print('hello', 1)")
    assert "".join(state.vm.output).startswith("hello\t1")


def test_new_state_opens_only_requested_libraries():
    bare = new_state()
    assert not has_global(bare, "print")
    selected = new_state(Libs.BASE | Libs.MATH)
    assert has_global(selected, "print")
    assert has_global(selected, "math")
    assert not has_global(selected, "os")
    assert execute_string(selected, "return math.max(1, 5)") == [5]
    bare.close()
    selected.close()


def test_open_libraries_later():
    lua = new_state()
    open_libraries(lua, Libs.STRING | Libs.TABLE)
    assert execute_string(lua, "return string.rep('a', 3), table.concat({1, 2}, ',')") == ["aaa", "1,2"]
    open_libraries(lua, Libs.NONE)
    lua.close()


def test_init_is_idempotent():
    with LuaState() as lua:
        with pytest.raises(BridgeNotInitialized):
            get_context(lua)
        context = init(lua)
        assert init(lua) is context
        assert get_context(lua) is context
        assert get_stack_size(lua) == 0


def test_coroutine_library_opens_on_request():
    lua = new_state(Libs.BASE | Libs.COROUTINE)
    assert execute_string(lua, "return type(coroutine), type(coroutine.create(print))") == ["table", "thread"]
    base_only = new_state(Libs.BASE)
    assert not has_global(base_only, "coroutine")
    lua.close()
    base_only.close()


def test_host_functions_run_inside_coroutines(state):
    def double(x: float) -> float:
        return x * 2

    def relay(callback: Function) -> None:
        callback()

    register_function(state, "double", double)
    register_function(state, "relay", relay)
    source = """
    local step = coroutine.wrap(function(a)
        local b = coroutine.yield(double(a))
        return double(b)
    end)
    return step(2), step(5)
    """
    assert execute_string(state, source) == [4, 10]
    ok, message = execute_string(
        state, "return coroutine.resume(coroutine.create(function() relay(coroutine.yield) end))"
    )
    assert ok is False
    assert "attempt to yield across a C-call boundary" in message
    assert state.gettop() == 0
