import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lua_vm import BytecodeVM, LuaRuntimeError, install_stdlib, run_source
from lua_vm.errors import chunk_id, error_message, format_traceback, TraceFrame


def test_chunk_id_forms():
    assert chunk_id("=stdin") == "stdin"
    assert chunk_id("@script.lua") == "script.lua"
    assert chunk_id("x = 1") == '[string "x = 1"]'
    assert chunk_id("first\nsecond") == '[string "first..."]'
    long_source = "a" * 100
    assert chunk_id(long_source) == '[string "' + "a" * 45 + '..."]'


def test_error_message_for_non_string_values():
    assert error_message("text") == "text"
    assert error_message(3) == "3"
    assert error_message(None) == "(error object is a nil value)"


def test_uncaught_error_carries_traceback():
    src = """local function level2()
    error("deep")
end
local function level1()
    level2()
end
level1()"""
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source(src)
    error = excinfo.value
    assert error.value.endswith(":2: deep")
    names = [frame.function_name for frame in error.frames]
    assert names[:4] == ["error", "level2", "level1", "main chunk"]
    assert error.frames[1].line == 2
    assert "stack traceback:" in error.traceback


def test_format_traceback_renders_native_frames():
    frames = [
        TraceFrame("print", "[C]", -1, 0, -1),
        TraceFrame("main chunk", "input", 3, 1, 4),
    ]
    assert format_traceback(frames) == (
        "stack traceback:\n\t[C]: in function 'print'\n\tinput:3: in function 'main chunk'"
    )


def test_error_objects_pass_through_pcall_unchanged():
    src = """
    local payload = {}
    local ok, err = pcall(function() error(payload) end)
    return ok, err == payload
    """
    assert run_source(src) == [False, True]


def test_error_level_two_points_at_caller():
    src = """local function check(x)
    if type(x) ~= "number" then error("expected number", 2) end
end
local ok, err = pcall(function()
    check("nope")
end)
return err"""
    assert run_source(src)[0].endswith(":5: expected number")


def test_nested_pcall_recovers_and_continues():
    src = """
    local log = {}
    local ok1 = pcall(function()
        local ok2, err = pcall(error, "inner", 0)
        log[#log + 1] = err
        error("outer", 0)
    end)
    log[#log + 1] = tostring(ok1)
    return table.concat(log, ",")
    """
    assert run_source(src) == ["inner,false"]


def test_stack_overflow_is_catchable():
    src = """
    local function recurse(n) return 1 + recurse(n + 1) end
    local ok, err = pcall(recurse, 1)
    return ok, err
    """
    ok, err = run_source(src)
    assert ok is False
    assert "stack overflow" in err


def test_vm_is_usable_after_an_error():
    vm = BytecodeVM()
    install_stdlib(vm, output=[])
    with pytest.raises(LuaRuntimeError):
        vm.execute("error('first')")
    assert vm.frames == []
    assert vm.execute("return 1 + 1") == [2]


def test_bad_argument_messages_from_builtins():
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source("return ('x'):rep({})")
    assert "bad argument #2 to 'rep' (number expected, got table)" in str(excinfo.value)
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source("return setmetatable(1, {})")
    assert "bad argument #1 to 'setmetatable' (table expected, got number)" in str(excinfo.value)


def test_compare_incompatible_types():
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source("return 1 < 'x'")
    assert "attempt to compare number with string" in str(excinfo.value)


def test_concatenate_table_names_the_variable():
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source("local parts = {} return 'a' .. parts")
    assert "attempt to concatenate a table value (local 'parts')" in str(excinfo.value)
