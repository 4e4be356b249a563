import gc
import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lua_vm import BuiltinFunction, BytecodeVM, LuaTable, LuaUserdata, install_stdlib


def _finalizer_table(log):
    def on_gc(args, vm):
        log.append(args[0].value)

    metatable = LuaTable()
    metatable.raw_set("__gc", BuiltinFunction("__gc", on_gc))
    metatable.raw_set("__name", "Resource")
    return metatable


def test_gc_runs_when_last_reference_drops():
    vm = BytecodeVM()
    install_stdlib(vm, output=[])
    log = []
    userdata = LuaUserdata("handle-1", vm, _finalizer_table(log))
    vm.globals.raw_set("resource", userdata)
    del userdata
    vm.execute("resource = nil")
    gc.collect()
    assert log == ["handle-1"]


def test_gc_runs_once_on_close_for_live_userdata():
    vm = BytecodeVM()
    log = []
    metatable = _finalizer_table(log)
    first = LuaUserdata("a", vm, metatable)
    second = LuaUserdata("b", vm, metatable)
    vm.close()
    assert log == ["b", "a"]
    first.finalize()
    second.finalize()
    assert log == ["b", "a"]


def test_userdata_without_gc_is_ignored():
    vm = BytecodeVM()
    holder = LuaUserdata(object(), vm)
    vm.close()
    assert holder.metatable is None


def test_finalizer_errors_are_logged_not_raised(caplog):
    vm = BytecodeVM()

    def broken(args, vm):
        raise ValueError("cleanup failed")

    metatable = LuaTable()
    metatable.raw_set("__gc", BuiltinFunction("__gc", broken))
    resource = LuaUserdata("x", vm, metatable)
    vm.close()
    assert resource.value == "x"
    assert any("__gc" in record.getMessage() for record in caplog.records)


def test_userdata_tostring_uses_name():
    vm = BytecodeVM()
    install_stdlib(vm, output=[])
    userdata = LuaUserdata("payload", vm, _finalizer_table([]))
    vm.globals.raw_set("res", userdata)
    text = vm.execute("return tostring(res), type(res)")
    assert text[0].startswith("Resource: 0x")
    assert text[1] == "userdata"
