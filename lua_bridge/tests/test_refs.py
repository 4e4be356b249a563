import copy
import pathlib
import sys
import threading

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lua_bridge import (
    BridgeError,
    BridgeNotInitialized,
    Function,
    Libs,
    LuaTypeError,
    Table,
    execute_string,
    get_global,
    new_state,
    register_function,
    registry_contains,
    set_global,
)
from lua_vm import LuaRuntimeError, LuaState


@pytest.fixture
def state():
    lua = new_state(Libs.ALL, output=[])
    yield lua
    lua.close()


def test_table_handle_length_and_indexing(state):
    execute_string(state, "t = {1, 2, 3}")
    table = get_global(state, "t", Table)
    assert table.length() == 3
    assert len(table) == 3
    assert table.get(2, int) == 2
    assert table[3] == 3
    assert table.get("missing") is None
    assert state.gettop() == 0


def test_table_handle_writes_are_visible_to_scripts(state):
    execute_string(state, "t = {}")
    table = get_global(state, "t", Table)
    table.set("name", "lua")
    table[1] = 10.5
    assert execute_string(state, "return t.name, t[1], #t") == ["lua", 10.5, 1]


def test_table_iteration_follows_next_order(state):
    execute_string(state, "t = {10, 20, 30, answer = 42}")
    table = get_global(state, "t", Table)
    items = table.items()
    assert [key for key, _ in items] == table.keys()
    assert dict(items) == {1: 10, 2: 20, 3: 30, "answer": 42}
    assert sorted(table.values(float)) == [10.0, 20.0, 30.0, 42.0]
    assert sorted(key for key in table if isinstance(key, int)) == [1, 2, 3]
    assert state.gettop() == 0


def test_length_honours_len_metamethod(state):
    execute_string(state, "t = setmetatable({}, {__len = function() return 7 end})")
    assert len(get_global(state, "t", Table)) == 7


def test_copies_share_one_object(state):
    execute_string(state, "t = {}")
    first = get_global(state, "t", Table)
    second = first.copy()
    third = copy.copy(first)
    first.set("k", "v")
    assert second.get("k") == "v"
    assert third.get("k", str) == "v"
    assert second.key == first.key == third.key


def test_last_release_clears_the_anchor(state):
    execute_string(state, "t = {}")
    table = get_global(state, "t", Table)
    other = table.copy()
    key = table.key
    table.release()
    assert table.released
    assert registry_contains(state, key)
    other.release()
    assert not registry_contains(state, key)
    other.release()
    assert not registry_contains(state, key)


def test_dropping_the_last_handle_releases_it(state):
    execute_string(state, "t = {}")
    table = get_global(state, "t", Table)
    key = table.key
    del table
    assert not registry_contains(state, key)


def test_context_manager_releases(state):
    execute_string(state, "t = {}")
    with get_global(state, "t", Table) as table:
        key = table.key
        assert registry_contains(state, key)
    assert not registry_contains(state, key)


def test_released_handle_cannot_be_used(state):
    execute_string(state, "t = {}")
    table = get_global(state, "t", Table)
    table.release()
    with pytest.raises(RuntimeError):
        table.get(1)
    with pytest.raises(RuntimeError):
        table.copy()


def test_handle_outlives_the_script_binding(state):
    execute_string(state, "t = {value = 'kept'}")
    table = get_global(state, "t", Table)
    execute_string(state, "t = nil collectgarbage()")
    assert table.get("value") == "kept"


def test_release_from_many_threads_clears_once(state):
    execute_string(state, "t = {}")
    table = get_global(state, "t", Table)
    copies = [table.copy() for _ in range(32)]
    key = table.key
    table.release()
    threads = [threading.Thread(target=handle.release) for handle in copies]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert not registry_contains(state, key)


def test_capture_checks_the_kind(state):
    execute_string(state, "n = 5")
    with pytest.raises(LuaTypeError, match="table expected, got number"):
        get_global(state, "n", Table)
    with pytest.raises(LuaTypeError) as info:
        get_global(state, "n", Function)
    assert info.value.expected == "Function"


def test_capture_needs_an_initialised_state():
    with LuaState() as lua:
        lua.new_table()
        with pytest.raises(BridgeNotInitialized):
            Table.capture(lua, -1)


def test_handles_as_host_function_arguments(state):
    def total(values: Table) -> float:
        return sum(values.values(float))

    def apply(fn: Function, x: float) -> float:
        return fn.call(x, returns=float)

    register_function(state, "total", total)
    register_function(state, "apply", apply)
    assert execute_string(state, "return total({1, 2, 3.5})") == [6.5]
    assert execute_string(state, "return apply(function(v) return v * 3 end, 2)") == [6.0]


def test_handles_can_be_returned_to_scripts(state):
    execute_string(state, "source = {size = 3}")
    kept = get_global(state, "source", Table)

    def fetch() -> Table:
        return kept

    register_function(state, "fetch", fetch)
    assert execute_string(state, "return fetch() == source, fetch().size") == [True, 3]


def test_function_handle_errors_reach_the_host(state):
    execute_string(state, "function fail(msg) error(msg) end")
    fail = get_global(state, "fail", Function)
    with pytest.raises(LuaRuntimeError, match="nope"):
        fail.call("nope")
    assert state.gettop() == 0


def test_handles_cannot_cross_into_another_interpreter(state):
    other = new_state(Libs.ALL)
    try:
        execute_string(state, "ta = {'from_a'}")
        execute_string(other, "tb = {'from_b'}")
        table = get_global(state, "ta", Table)
        with pytest.raises(BridgeError, match="another interpreter"):
            set_global(other, "x", table)
        assert other.gettop() == 0
        assert execute_string(other, "return x") == [None]
        set_global(state, "x", table)
        assert execute_string(state, "return x[1]") == ["from_a"]
    finally:
        other.close()
