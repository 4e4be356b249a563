import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lua_vm import LuaRuntimeError, LuaSyntaxError, run_source


def test_arithmetic_and_assignment():
    src = """
    x = 10
    y = 20
    z = x + y * 2
    return z
    """
    assert run_source(src) == [50]


def test_integer_and_float_division():
    result = run_source("return 7 // 2, 7 / 2, 7 % 3, -7 // 2, 2^10, 7.0 // 2")
    assert result == [3, 3.5, 1, -4, 1024.0, 3.0]
    assert isinstance(result[0], int)
    assert isinstance(result[4], float)


def test_string_coercion_in_arithmetic_and_concat():
    assert run_source('return "10" + 5, 1 .. 2, "n=" .. 1.5') == [15, "12", "n=1.5"]


def test_if_elseif_else():
    src = """
    local function classify(n)
        if n < 0 then
            return "negative"
        elseif n == 0 then
            return "zero"
        else
            return "positive"
        end
    end
    return classify(-3), classify(0), classify(8)
    """
    assert run_source(src) == ["negative", "zero", "positive"]


def test_while_and_repeat_loops():
    src = """
    local x = 0
    while x < 5 do
        x = x + 1
    end
    local y = 0
    repeat
        local step = 2
        y = y + step
    until y >= step * 3
    return x, y
    """
    assert run_source(src) == [5, 6]


def test_numeric_for_with_step_and_break():
    src = """
    local total = 0
    for i = 10, 1, -2 do
        total = total + i
    end
    local last
    for i = 1, 100 do
        if i > 3 then break end
        last = i
    end
    return total, last
    """
    assert run_source(src) == [30, 3]


def test_float_for_loop():
    assert run_source("local n = 0 for i = 0, 1, 0.25 do n = n + 1 end return n") == [5]


def test_generic_for_over_pairs_and_ipairs():
    src = """
    local t = {10, 20, 30}
    local sum = 0
    for _, v in ipairs(t) do
        sum = sum + v
    end
    local keys = 0
    for k, v in pairs({a = 1, b = 2, 3}) do
        keys = keys + 1
    end
    return sum, keys
    """
    assert run_source(src) == [60, 3]


def test_closures_capture_fresh_loop_variables():
    src = """
    local fns = {}
    for i = 1, 3 do
        fns[i] = function() return i end
    end
    return fns[1](), fns[2](), fns[3]()
    """
    assert run_source(src) == [1, 2, 3]


def test_closure_counter_shares_upvalue():
    src = """
    local function counter(start)
        local n = start
        return function()
            n = n + 1
            return n
        end
    end
    local c = counter(7)
    c()
    return c(), c()
    """
    assert run_source(src) == [9, 10]


def test_recursive_local_function():
    src = """
    local function fib(n)
        if n < 2 then return n end
        return fib(n - 1) + fib(n - 2)
    end
    return fib(15)
    """
    assert run_source(src) == [610]


def test_varargs_and_multiple_returns():
    src = """
    local function pack(...)
        return select("#", ...), ...
    end
    local function two() return 1, 2 end
    local t = {two(), two()}
    local a, b, c = two()
    return #t, a, b, c, pack(5, nil, 7)
    """
    assert run_source(src) == [3, 1, 2, None, 3, 5, None, 7]


def test_parenthesised_call_truncates_results():
    assert run_source("local function f() return 1, 2 end return (f())") == [1]


def test_method_definitions_and_calls():
    src = """
    local Account = {balance = 0}
    function Account:deposit(amount)
        self.balance = self.balance + amount
        return self
    end
    Account:deposit(5):deposit(10)
    return Account.balance
    """
    assert run_source(src) == [15]


def test_goto_continue():
    src = """
    local odd = 0
    for i = 1, 10 do
        if i % 2 == 0 then goto continue end
        odd = odd + i
        ::continue::
    end
    return odd
    """
    assert run_source(src) == [25]


def test_logical_operators_short_circuit():
    src = """
    local calls = 0
    local function bump() calls = calls + 1 return true end
    local a = false and bump()
    local b = true or bump()
    local c = nil or "default"
    return a, b, c, calls
    """
    assert run_source(src) == [False, True, "default", 0]


def test_bitwise_operators():
    assert run_source("return 5 & 3, 5 | 3, 5 ~ 3, ~0, 1 << 4, 256 >> 4") == [1, 7, 6, -1, 16, 16]


def test_length_and_nested_tables():
    src = """
    local t = {1, 2, 3, nested = {x = {y = 42}}}
    return #t, t.nested.x.y, #"hello"
    """
    assert run_source(src) == [3, 42, 5]


def test_long_strings_and_comments():
    src = """
    --[[ a long
    comment ]]
    local s = [[line one
line two]]
    return s
    """
    assert run_source(src) == ["line one\nline two"]


def test_integer_overflow_wraps():
    assert run_source("return math.maxinteger + 1 == math.mininteger") == [True]


def test_syntax_error_reports_chunk_and_line():
    with pytest.raises(LuaSyntaxError) as excinfo:
        run_source("x = = 1")
    assert str(excinfo.value).startswith('[string "x = = 1"]:1:')


def test_unclosed_block_mentions_opening_line():
    with pytest.raises(LuaSyntaxError) as excinfo:
        run_source("if true then\nx = 1\n")
    assert "'end' expected (to close 'if' at line 1)" in str(excinfo.value)


def test_runtime_error_for_calling_nil_global():
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source("missing_function()")
    assert "attempt to call a nil value (global 'missing_function')" in str(excinfo.value)


def test_runtime_error_for_indexing_nil_local():
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source("local cfg\nreturn cfg.value")
    assert str(excinfo.value) == "[string \"local cfg...\"]:2: attempt to index a nil value (local 'cfg')"


def test_arithmetic_on_nil_field_names_the_field():
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source("local t = {} return t.count + 1")
    assert "attempt to perform arithmetic on a nil value (field 'count')" in str(excinfo.value)
