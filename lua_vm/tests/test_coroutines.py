import pathlib
import sys
import threading

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lua_vm import BytecodeVM, install_stdlib, run_source


def test_resume_and_yield_exchange_values():
    src = """
    local co = coroutine.create(function(a, b)
        local c = coroutine.yield(a + b)
        local d, e = coroutine.yield(c * 2)
        return d + e
    end)
    local _, first = coroutine.resume(co, 1, 2)
    local _, second = coroutine.resume(co, 10)
    local _, third = coroutine.resume(co, 3, 4)
    return first, second, third, coroutine.status(co), coroutine.resume(co)
    """
    assert run_source(src) == [3, 20, 7, "dead", False, "cannot resume dead coroutine"]


def test_status_running_and_isyieldable():
    src = """
    local main = coroutine.running()
    local co
    co = coroutine.create(function()
        return coroutine.status(co), coroutine.status(main), coroutine.isyieldable()
    end)
    local ok, inside, outer, yieldable = coroutine.resume(co)
    local _, is_main = coroutine.running()
    return ok, inside, outer, yieldable, coroutine.status(co), coroutine.status(main),
        is_main, coroutine.isyieldable(), type(co)
    """
    assert run_source(src) == [True, "running", "normal", True, "dead", "running", True, False, "thread"]


def test_main_coroutine_cannot_be_resumed():
    assert run_source("return coroutine.resume(coroutine.running())") == [
        False,
        "cannot resume non-suspended coroutine",
    ]


def test_errors_inside_coroutines_are_returned():
    src = """
    local co = coroutine.create(function() error("boom") end)
    local ok, message = coroutine.resume(co)
    local obj = coroutine.create(function() error({code = 7}) end)
    local ok2, value = coroutine.resume(obj)
    return ok, message, coroutine.status(co), ok2, value.code
    """
    ok, message, status, ok2, code = run_source(src)
    assert ok is False
    assert message.endswith(":2: boom")
    assert status == "dead"
    assert (ok2, code) == (False, 7)


def test_wrap_drives_generic_for():
    src = """
    local function range(n)
        return coroutine.wrap(function()
            for i = 1, n do coroutine.yield(i) end
        end)
    end
    local sum = 0
    for i in range(4) do sum = sum + i end
    return sum
    """
    assert run_source(src) == [10]


def test_wrap_raises_errors_in_the_caller():
    src = """
    local failing = coroutine.wrap(function() error("bad", 0) end)
    local ok, message = pcall(failing)
    local once = coroutine.wrap(function() end)
    once()
    local ok2, message2 = pcall(once)
    return ok, message, ok2, message2
    """
    ok, message, ok2, message2 = run_source(src)
    assert (ok, message, ok2) == (False, "bad", False)
    assert message2.endswith("cannot resume dead coroutine")


def test_yield_survives_pcall_inside_the_body():
    src = """
    local co = coroutine.create(function()
        return pcall(function() return coroutine.yield("paused") + 1 end)
    end)
    local _, first = coroutine.resume(co)
    local _, ok, value = coroutine.resume(co, 41)
    return first, ok, value
    """
    assert run_source(src) == ["paused", True, 42]


def test_nested_coroutines():
    src = """
    local inner = coroutine.wrap(function()
        coroutine.yield("a")
        coroutine.yield("b")
    end)
    local outer = coroutine.wrap(function()
        coroutine.yield(inner() .. inner())
        coroutine.yield("c")
    end)
    return outer(), outer()
    """
    assert run_source(src) == ["ab", "c"]


def test_argument_and_context_errors():
    src = """
    local ok, message = pcall(coroutine.resume, 1)
    local ok2, message2 = pcall(coroutine.yield, 1)
    local ok3, message3 = pcall(coroutine.create)
    return message, ok2, message2, message3
    """
    message, ok2, message2, message3 = run_source(src)
    assert message == "bad argument #1 to 'resume' (coroutine expected, got number)"
    assert ok2 is False
    assert message2.endswith("attempt to yield from outside a coroutine")
    assert message3 == "bad argument #1 to 'create' (function expected, got no value)"


def test_close_stops_a_suspended_coroutine():
    src = """
    local reached = false
    local co = coroutine.create(function()
        coroutine.yield(1)
        reached = true
    end)
    coroutine.resume(co)
    local ok = coroutine.close(co)
    local failed = coroutine.create(function() error("x", 0) end)
    coroutine.resume(failed)
    return ok, coroutine.status(co), reached, coroutine.close(failed)
    """
    assert run_source(src) == [True, "dead", False, False, "x"]


def test_closing_the_vm_ends_suspended_threads():
    vm = BytecodeVM()
    install_stdlib(vm)
    vm.execute("co = coroutine.create(function() coroutine.yield() end) coroutine.resume(co)")
    co = vm.globals.raw_get("co")
    assert co.status == "suspended"
    vm.close()
    assert co.status == "dead"
    assert f"lua-coroutine-{id(co):x}" not in {thread.name for thread in threading.enumerate()}
