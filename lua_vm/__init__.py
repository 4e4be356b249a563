from .errors import LuaRuntimeError, LuaSyntaxError, TraceFrame
from .state import MULTRET, REGISTRY_INDEX, LuaState, LuaStatus, LuaType
from .stdlib import install_stdlib
from .table import LuaTable
from .values import BuiltinFunction, HostClosure, LightUserdata, LuaMultiReturn, LuaUserdata
from .vm import BytecodeVM, run_source

__all__ = [
    "run_source",
    "BytecodeVM",
    "LuaState",
    "LuaStatus",
    "LuaType",
    "MULTRET",
    "REGISTRY_INDEX",
    "LuaRuntimeError",
    "LuaSyntaxError",
    "TraceFrame",
    "BuiltinFunction",
    "HostClosure",
    "LightUserdata",
    "LuaMultiReturn",
    "LuaUserdata",
    "LuaTable",
    "install_stdlib",
]
