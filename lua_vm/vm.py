from __future__ import annotations

import itertools
import logging
import math
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .bytecode import InstructionDebug, Opcode, Program
from .compiler import MAIN_LABEL, compile_chunk
from .errors import LuaRuntimeError, TraceFrame, chunk_id
from .parser import LuaParser
from .table import LuaTable
from .values import (
    BuiltinFunction,
    Cell,
    HostClosure,
    LuaFunction,
    LuaMultiReturn,
    LuaUserdata,
    is_callable_value,
    is_truthy,
    lua_type_name,
    number_to_string,
    raw_equal,
    raw_tostring,
    to_integer,
    to_number,
    wrap_integer,
)

logger = logging.getLogger(__name__)

# C-stack style limit on nested calls; each level costs several Python frames.
MAX_CALL_DEPTH = 150
# Mirrors MAXTAGLOOP: longest __index/__newindex chain followed.
MAX_TAG_LOOP = 2000

_ARITH_EVENTS = {
    Opcode.ADD: "__add",
    Opcode.SUB: "__sub",
    Opcode.MUL: "__mul",
    Opcode.DIV: "__div",
    Opcode.MOD: "__mod",
    Opcode.POW: "__pow",
    Opcode.IDIV: "__idiv",
    Opcode.BAND: "__band",
    Opcode.BOR: "__bor",
    Opcode.BXOR: "__bxor",
    Opcode.SHL: "__shl",
    Opcode.SHR: "__shr",
}

_BITWISE = {Opcode.BAND, Opcode.BOR, Opcode.BXOR, Opcode.SHL, Opcode.SHR}


@dataclass
class CallFrame:
    function: LuaFunction
    args: List[Any]
    registers: Dict[str, Any] = field(default_factory=dict)
    pending_params: List[Any] = field(default_factory=list)
    last_return: List[Any] = field(default_factory=list)
    arg_index: int = 0
    pc: int = 0
    current_pc: int = 0

    @property
    def name(self) -> str:
        return self.function.name

    def debug(self) -> InstructionDebug | None:
        return self.function.program.debug_at(self.current_pc)


@dataclass
class NativeFrame:
    function: Any

    @property
    def name(self) -> str:
        return getattr(self.function, "name", "?")


def _shift_left(value: int, amount: int) -> int:
    if amount <= -64 or amount >= 64:
        return 0
    if amount >= 0:
        return wrap_integer(value << amount)
    return wrap_integer((value & 0xFFFFFFFFFFFFFFFF) >> -amount)


class BytecodeVM:
    """Executes compiled chunks over one global table.

    Lua calls recurse in Python: ``call`` runs a function to completion and
    returns its results as a list. ``frames`` mirrors the Lua call stack for
    error positions and tracebacks.
    """

    def __init__(self, globals_table: Optional[LuaTable] = None) -> None:
        self.globals = globals_table if globals_table is not None else LuaTable()
        self.registry = LuaTable()
        self.string_metatable: Optional[LuaTable] = None
        self.type_metatables: Dict[str, LuaTable] = {}
        self.frames: List[Any] = []
        self.host_invoker: Optional[Callable[[HostClosure, List[Any]], List[Any]]] = None
        # print/io.write target: a list collects lines, None writes to sys.stdout.
        self.output: Optional[Any] = None
        self.input: Optional[Any] = None
        self._userdata: "weakref.WeakValueDictionary[int, LuaUserdata]" = weakref.WeakValueDictionary()
        self._userdata_ids = itertools.count()
        # Coroutine bookkeeping; see lua_vm.coroutines.
        self.current_coroutine: Optional[Any] = None
        self.main_coroutine: Optional[Any] = None
        self.coroutines: "weakref.WeakSet[Any]" = weakref.WeakSet()
        self._handlers = {
            Opcode.LOAD_CONST: self._op_LOAD_CONST,
            Opcode.MOV: self._op_MOV,
            Opcode.GET_GLOBAL: self._op_GET_GLOBAL,
            Opcode.SET_GLOBAL: self._op_SET_GLOBAL,
            Opcode.ADD: self._op_ARITH,
            Opcode.SUB: self._op_ARITH,
            Opcode.MUL: self._op_ARITH,
            Opcode.DIV: self._op_ARITH,
            Opcode.MOD: self._op_ARITH,
            Opcode.POW: self._op_ARITH,
            Opcode.IDIV: self._op_ARITH,
            Opcode.BAND: self._op_ARITH,
            Opcode.BOR: self._op_ARITH,
            Opcode.BXOR: self._op_ARITH,
            Opcode.SHL: self._op_ARITH,
            Opcode.SHR: self._op_ARITH,
            Opcode.CONCAT: self._op_CONCAT,
            Opcode.NEG: self._op_NEG,
            Opcode.BNOT: self._op_BNOT,
            Opcode.NOT: self._op_NOT,
            Opcode.LEN: self._op_LEN,
            Opcode.EQ: self._op_EQ,
            Opcode.LT: self._op_LT,
            Opcode.LE: self._op_LE,
            Opcode.JMP: self._op_JMP,
            Opcode.JZ: self._op_JZ,
            Opcode.JNZ: self._op_JNZ,
            Opcode.LABEL: self._op_LABEL,
            Opcode.MAKE_CELL: self._op_MAKE_CELL,
            Opcode.CELL_GET: self._op_CELL_GET,
            Opcode.CELL_SET: self._op_CELL_SET,
            Opcode.GET_UPVAL: self._op_GET_UPVAL,
            Opcode.SET_UPVAL: self._op_SET_UPVAL,
            Opcode.CLOSURE: self._op_CLOSURE,
            Opcode.ARG: self._op_ARG,
            Opcode.VARARG: self._op_VARARG,
            Opcode.VARARG_FIRST: self._op_VARARG_FIRST,
            Opcode.PARAM: self._op_PARAM,
            Opcode.PARAM_EXPAND: self._op_PARAM_EXPAND,
            Opcode.CALL_VALUE: self._op_CALL_VALUE,
            Opcode.RESULT: self._op_RESULT,
            Opcode.RESULT_LIST: self._op_RESULT_LIST,
            Opcode.LIST_GET: self._op_LIST_GET,
            Opcode.RETURN_MULTI: self._op_RETURN_MULTI,
            Opcode.FOR_PREP: self._op_FOR_PREP,
            Opcode.FOR_LOOP: self._op_FOR_LOOP,
            Opcode.TABLE_NEW: self._op_TABLE_NEW,
            Opcode.TABLE_GET: self._op_TABLE_GET,
            Opcode.TABLE_SET: self._op_TABLE_SET,
            Opcode.TABLE_RAWSET: self._op_TABLE_RAWSET,
            Opcode.TABLE_EXTEND: self._op_TABLE_EXTEND,
            Opcode.IS_NIL: self._op_IS_NIL,
        }

    # ------------------------------------------------------------------ loading
    def load(self, source: str, chunkname: Optional[str] = None) -> LuaFunction:
        """Compile ``source`` into a callable main-chunk function.

        Raises ``LuaSyntaxError`` with a ``chunk:line:`` prefixed message.
        """
        name = chunk_id(chunkname if chunkname is not None else source)
        chunk = LuaParser.parse(source, name)
        program: Program = compile_chunk(chunk, name)
        return LuaFunction(program, MAIN_LABEL, [], "main chunk")

    def execute(self, source: str, chunkname: Optional[str] = None) -> List[Any]:
        return self.call(self.load(source, chunkname), [])

    # ------------------------------------------------------------------ userdata
    def track_userdata(self, userdata: LuaUserdata) -> None:
        self._userdata[next(self._userdata_ids)] = userdata

    def close(self) -> None:
        """Stop suspended coroutines, then run pending ``__gc`` handlers, most recently created first."""
        for coroutine in list(self.coroutines):
            coroutine.kill()
        logger.debug("closing VM with %d live userdata", len(self._userdata))
        for key in sorted(self._userdata.keys(), reverse=True):
            userdata = self._userdata.get(key)
            if userdata is not None:
                userdata.finalize()
        self._userdata.clear()

    # ------------------------------------------------------------------ errors
    def where(self, level: int = 1) -> str:
        """Position prefix of the function ``level`` frames up (0 is the running one)."""
        index = len(self.frames) - 1 - level
        if index < 0 or index >= len(self.frames):
            return ""
        frame = self.frames[index]
        if not isinstance(frame, CallFrame):
            return ""
        debug = frame.debug()
        if debug is None or debug.location.line <= 0:
            return ""
        return f"{debug.location.file}:{debug.location.line}: "

    def capture_traceback(self) -> List[TraceFrame]:
        frames: List[TraceFrame] = []
        for frame in reversed(self.frames):
            if isinstance(frame, CallFrame):
                debug = frame.debug()
                if debug is not None:
                    location = debug.location
                    frames.append(
                        TraceFrame(debug.function_name, location.file, location.line, location.column, frame.current_pc)
                    )
                    continue
                frames.append(TraceFrame(frame.name, "?", 0, 0, frame.current_pc))
            else:
                frames.append(TraceFrame(frame.name, "[C]", -1, 0, -1))
        return frames

    def runtime_error(self, message: str, level: int = 1) -> LuaRuntimeError:
        return LuaRuntimeError(self.where(level) + message, self.capture_traceback())

    def _wrap_runtime_error(self, exc: Exception, level: int) -> LuaRuntimeError:
        if isinstance(exc, RecursionError):
            return self.runtime_error("stack overflow", level)
        message = str(exc) or exc.__class__.__name__
        return self.runtime_error(message, level)

    # ------------------------------------------------------------------ calling
    def call(self, func: Any, args: Sequence[Any]) -> List[Any]:
        """Call any Lua value with ``args`` and return every result."""
        if len(self.frames) >= MAX_CALL_DEPTH:
            raise self.runtime_error("stack overflow", 0)
        if isinstance(func, LuaFunction):
            return self._call_lua(func, list(args))
        if isinstance(func, (BuiltinFunction, HostClosure)):
            return self._call_native(func, list(args))
        handler = self.get_metamethod(func, "__call")
        if handler is None:
            raise self.runtime_error(f"attempt to call a {lua_type_name(func)} value", 0)
        return self.call(handler, [func, *args])

    def call_value(self, func: Any, args: Sequence[Any], description: str = "") -> List[Any]:
        if not is_callable_value(func) and self.get_metamethod(func, "__call") is None:
            suffix = f" ({description})" if description else ""
            raise self.runtime_error(f"attempt to call a {lua_type_name(func)} value{suffix}", 0)
        return self.call(func, args)

    def call_first(self, func: Any, args: Sequence[Any]) -> Any:
        results = self.call(func, args)
        return results[0] if results else None

    def _call_lua(self, func: LuaFunction, args: List[Any]) -> List[Any]:
        frame = CallFrame(func, args)
        frame.pc = func.program.labels[func.label] + 1
        self.frames.append(frame)
        try:
            return self._execute(frame)
        finally:
            self.frames.pop()

    def _call_native(self, func: Any, args: List[Any]) -> List[Any]:
        self.frames.append(NativeFrame(func))
        try:
            if isinstance(func, HostClosure):
                if self.host_invoker is None:
                    raise RuntimeError(f"no host stack attached to call '{func.name}'")
                return self.host_invoker(func, args)
            return self._coerce_call_result(func(args, self))
        except LuaRuntimeError:
            raise
        except Exception as exc:  # noqa: BLE001 - converted into a Lua error
            raise self._wrap_runtime_error(exc, 1) from exc
        finally:
            self.frames.pop()

    @staticmethod
    def _coerce_call_result(result: Any) -> List[Any]:
        if result is None:
            return []
        if isinstance(result, LuaMultiReturn):
            return list(result.values)
        return [result]

    def _execute(self, frame: CallFrame) -> List[Any]:
        instructions = frame.function.program.instructions
        handlers = self._handlers
        while True:
            frame.current_pc = frame.pc
            inst = instructions[frame.pc]
            frame.pc += 1
            try:
                result = handlers[inst.opcode](frame, inst.args, inst.opcode)
            except LuaRuntimeError:
                raise
            except Exception as exc:  # noqa: BLE001 - converted into a Lua error
                raise self._wrap_runtime_error(exc, 0) from exc
            if result is not None:
                return result

    # ------------------------------------------------------------------ metatables
    def get_metatable(self, value: Any) -> Optional[LuaTable]:
        if isinstance(value, (LuaTable, LuaUserdata)):
            return value.metatable
        if isinstance(value, str):
            return self.string_metatable
        return self.type_metatables.get(lua_type_name(value))

    def set_metatable(self, value: Any, metatable: Optional[LuaTable]) -> None:
        if isinstance(value, (LuaTable, LuaUserdata)):
            value.set_metatable(metatable)
        elif isinstance(value, str):
            self.string_metatable = metatable
        elif metatable is None:
            self.type_metatables.pop(lua_type_name(value), None)
        else:
            self.type_metatables[lua_type_name(value)] = metatable

    def get_metamethod(self, value: Any, event: str) -> Any:
        metatable = self.get_metatable(value)
        if metatable is None:
            return None
        return metatable.raw_get(event)

    def index(self, obj: Any, key: Any, description: str = "") -> Any:
        """``obj[key]`` honouring ``__index``."""
        current = obj
        for _ in range(MAX_TAG_LOOP):
            if isinstance(current, LuaTable):
                value = current.raw_get(key)
                if value is not None:
                    return value
                handler = self.get_metamethod(current, "__index")
                if handler is None:
                    return None
            else:
                handler = self.get_metamethod(current, "__index")
                if handler is None:
                    suffix = f" ({description})" if description and current is obj else ""
                    raise RuntimeError(f"attempt to index a {lua_type_name(current)} value{suffix}")
            if is_callable_value(handler):
                return self.call_first(handler, [current, key])
            current = handler
        raise RuntimeError("'__index' chain too long; possible loop")

    def set_index(self, obj: Any, key: Any, value: Any, description: str = "") -> None:
        """``obj[key] = value`` honouring ``__newindex``."""
        current = obj
        for _ in range(MAX_TAG_LOOP):
            if isinstance(current, LuaTable):
                handler = self.get_metamethod(current, "__newindex")
                if handler is None or current.raw_get(key) is not None:
                    current.raw_set(key, value)
                    return
            else:
                handler = self.get_metamethod(current, "__newindex")
                if handler is None:
                    suffix = f" ({description})" if description and current is obj else ""
                    raise RuntimeError(f"attempt to index a {lua_type_name(current)} value{suffix}")
            if is_callable_value(handler):
                self.call(handler, [current, key, value])
                return
            current = handler
        raise RuntimeError("'__newindex' chain too long; possible loop")

    def tostring(self, value: Any) -> str:
        handler = self.get_metamethod(value, "__tostring")
        if handler is not None:
            result = self.call_first(handler, [value])
            if not isinstance(result, str):
                if isinstance(result, (int, float)) and not isinstance(result, bool):
                    return number_to_string(result)
                raise RuntimeError("'__tostring' must return a string")
            return result
        metatable = self.get_metatable(value)
        if metatable is not None and not isinstance(value, str):
            name = metatable.raw_get("__name")
            if isinstance(name, str):
                return f"{name}: 0x{id(value):08x}"
        return raw_tostring(value)

    def length(self, value: Any, description: str = "") -> Any:
        if isinstance(value, str):
            return len(value)
        handler = self.get_metamethod(value, "__len")
        if handler is not None:
            return self.call_first(handler, [value])
        if isinstance(value, LuaTable):
            return value.lua_len()
        suffix = f" ({description})" if description else ""
        raise RuntimeError(f"attempt to get length of a {lua_type_name(value)} value{suffix}")

    def equals(self, left: Any, right: Any) -> bool:
        if raw_equal(left, right):
            return True
        same_kind = (isinstance(left, LuaTable) and isinstance(right, LuaTable)) or (
            isinstance(left, LuaUserdata) and isinstance(right, LuaUserdata)
        )
        if not same_kind:
            return False
        handler = self.get_metamethod(left, "__eq")
        if handler is None:
            handler = self.get_metamethod(right, "__eq")
        if handler is None:
            return False
        return is_truthy(self.call_first(handler, [left, right]))

    def less_than(self, left: Any, right: Any) -> bool:
        if _both_numbers(left, right) or (isinstance(left, str) and isinstance(right, str)):
            return left < right
        return self._compare_metamethod("__lt", left, right)

    def less_equal(self, left: Any, right: Any) -> bool:
        if _both_numbers(left, right) or (isinstance(left, str) and isinstance(right, str)):
            return left <= right
        return self._compare_metamethod("__le", left, right)

    def _compare_metamethod(self, event: str, left: Any, right: Any) -> bool:
        handler = self.get_metamethod(left, event)
        if handler is None:
            handler = self.get_metamethod(right, event)
        if handler is None:
            left_type, right_type = lua_type_name(left), lua_type_name(right)
            if left_type == right_type:
                raise RuntimeError(f"attempt to compare two {left_type} values")
            raise RuntimeError(f"attempt to compare {left_type} with {right_type}")
        return is_truthy(self.call_first(handler, [left, right]))

    # ------------------------------------------------------------------ arithmetic
    def arith(self, opcode: Opcode, left: Any, right: Any, names: Sequence[str] = ("", "")) -> Any:
        if opcode in _BITWISE:
            a, b = to_integer(left), to_integer(right)
            if a is not None and b is not None:
                return _bitwise(opcode, a, b)
        else:
            a, b = to_number(left), to_number(right)
            if a is not None and b is not None:
                return _arith(opcode, a, b)
        handler = self.get_metamethod(left, _ARITH_EVENTS[opcode])
        if handler is None:
            handler = self.get_metamethod(right, _ARITH_EVENTS[opcode])
        if handler is not None:
            return self.call_first(handler, [left, right])
        raise RuntimeError(self._arith_error(opcode, left, right, names))

    @staticmethod
    def _arith_error(opcode: Opcode, left: Any, right: Any, names: Sequence[str]) -> str:
        if opcode in _BITWISE and to_number(left) is not None and to_number(right) is not None:
            return "number has no integer representation"
        bad_index = 0 if to_number(left) is None else 1
        bad = left if bad_index == 0 else right
        name = names[bad_index] if bad_index < len(names) else ""
        suffix = f" ({name})" if name else ""
        action = "perform bitwise operation on" if opcode in _BITWISE else "perform arithmetic on"
        return f"attempt to {action} a {lua_type_name(bad)} value{suffix}"

    def concat(self, left: Any, right: Any, names: Sequence[str] = ("", "")) -> Any:
        if _concatenable(left) and _concatenable(right):
            return _as_concat_string(left) + _as_concat_string(right)
        handler = self.get_metamethod(left, "__concat")
        if handler is None:
            handler = self.get_metamethod(right, "__concat")
        if handler is not None:
            return self.call_first(handler, [left, right])
        bad_index = 0 if not _concatenable(left) else 1
        bad = (left, right)[bad_index]
        name = names[bad_index] if bad_index < len(names) else ""
        suffix = f" ({name})" if name else ""
        raise RuntimeError(f"attempt to concatenate a {lua_type_name(bad)} value{suffix}")

    # ------------------------------------------------------------------ opcodes
    def _op_LOAD_CONST(self, frame: CallFrame, args, opcode):
        frame.registers[args[0]] = args[1]

    def _op_MOV(self, frame: CallFrame, args, opcode):
        frame.registers[args[0]] = frame.registers.get(args[1])

    def _op_GET_GLOBAL(self, frame: CallFrame, args, opcode):
        frame.registers[args[0]] = self.index(self.globals, args[1])

    def _op_SET_GLOBAL(self, frame: CallFrame, args, opcode):
        self.set_index(self.globals, args[0], frame.registers.get(args[1]))

    def _op_ARITH(self, frame: CallFrame, args, opcode):
        regs = frame.registers
        frame.registers[args[0]] = self.arith(opcode, regs.get(args[1]), regs.get(args[2]), args[3:5])

    def _op_CONCAT(self, frame: CallFrame, args, opcode):
        regs = frame.registers
        regs[args[0]] = self.concat(regs.get(args[1]), regs.get(args[2]), args[3:5])

    def _op_NEG(self, frame: CallFrame, args, opcode):
        value = frame.registers.get(args[1])
        number = to_number(value)
        if number is not None:
            frame.registers[args[0]] = wrap_integer(-number) if isinstance(number, int) else -number
            return
        handler = self.get_metamethod(value, "__unm")
        if handler is None:
            raise RuntimeError(self._arith_error(Opcode.ADD, value, value, args[2:3]))
        frame.registers[args[0]] = self.call_first(handler, [value, value])

    def _op_BNOT(self, frame: CallFrame, args, opcode):
        value = frame.registers.get(args[1])
        integer = to_integer(value)
        if integer is not None:
            frame.registers[args[0]] = wrap_integer(~integer)
            return
        handler = self.get_metamethod(value, "__bnot")
        if handler is None:
            raise RuntimeError(self._arith_error(Opcode.BAND, value, value, args[2:3]))
        frame.registers[args[0]] = self.call_first(handler, [value, value])

    def _op_NOT(self, frame: CallFrame, args, opcode):
        frame.registers[args[0]] = not is_truthy(frame.registers.get(args[1]))

    def _op_LEN(self, frame: CallFrame, args, opcode):
        description = args[2] if len(args) > 2 else ""
        frame.registers[args[0]] = self.length(frame.registers.get(args[1]), description)

    def _op_EQ(self, frame: CallFrame, args, opcode):
        regs = frame.registers
        regs[args[0]] = self.equals(regs.get(args[1]), regs.get(args[2]))

    def _op_LT(self, frame: CallFrame, args, opcode):
        regs = frame.registers
        regs[args[0]] = self.less_than(regs.get(args[1]), regs.get(args[2]))

    def _op_LE(self, frame: CallFrame, args, opcode):
        regs = frame.registers
        regs[args[0]] = self.less_equal(regs.get(args[1]), regs.get(args[2]))

    def _jump(self, frame: CallFrame, label: str) -> None:
        frame.pc = frame.function.program.labels[label]

    def _op_JMP(self, frame: CallFrame, args, opcode):
        self._jump(frame, args[0])

    def _op_JZ(self, frame: CallFrame, args, opcode):
        if not is_truthy(frame.registers.get(args[0])):
            self._jump(frame, args[1])

    def _op_JNZ(self, frame: CallFrame, args, opcode):
        if is_truthy(frame.registers.get(args[0])):
            self._jump(frame, args[1])

    def _op_LABEL(self, frame: CallFrame, args, opcode):
        return None

    def _op_MAKE_CELL(self, frame: CallFrame, args, opcode):
        src = args[1]
        frame.registers[args[0]] = Cell(frame.registers.get(src) if src is not None else None)

    def _op_CELL_GET(self, frame: CallFrame, args, opcode):
        frame.registers[args[0]] = frame.registers[args[1]].value

    def _op_CELL_SET(self, frame: CallFrame, args, opcode):
        frame.registers[args[0]].value = frame.registers.get(args[1])

    def _op_GET_UPVAL(self, frame: CallFrame, args, opcode):
        frame.registers[args[0]] = frame.function.upvalues[args[1]].value

    def _op_SET_UPVAL(self, frame: CallFrame, args, opcode):
        frame.function.upvalues[args[0]].value = frame.registers.get(args[1])

    def _op_CLOSURE(self, frame: CallFrame, args, opcode):
        dst, label, name = args[0], args[1], args[2]
        upvalues: List[Cell] = []
        for kind, source in args[3:]:
            if kind == "cell":
                upvalues.append(frame.registers[source])
            else:
                upvalues.append(frame.function.upvalues[source])
        frame.registers[dst] = LuaFunction(frame.function.program, label, upvalues, name)

    def _op_ARG(self, frame: CallFrame, args, opcode):
        index = frame.arg_index
        frame.registers[args[0]] = frame.args[index] if index < len(frame.args) else None
        frame.arg_index = index + 1

    def _op_VARARG(self, frame: CallFrame, args, opcode):
        frame.registers[args[0]] = list(frame.args[frame.arg_index:])

    def _op_VARARG_FIRST(self, frame: CallFrame, args, opcode):
        values = frame.registers.get(args[1]) or []
        frame.registers[args[0]] = values[0] if values else None

    def _op_PARAM(self, frame: CallFrame, args, opcode):
        frame.pending_params.append(frame.registers.get(args[0]))

    def _op_PARAM_EXPAND(self, frame: CallFrame, args, opcode):
        frame.pending_params.extend(frame.registers.get(args[0]) or [])

    def _op_CALL_VALUE(self, frame: CallFrame, args, opcode):
        func = frame.registers.get(args[0])
        call_args = frame.pending_params
        frame.pending_params = []
        description = args[1] if len(args) > 1 else ""
        frame.last_return = self.call_value(func, call_args, description)

    def _op_RESULT(self, frame: CallFrame, args, opcode):
        frame.registers[args[0]] = frame.last_return[0] if frame.last_return else None

    def _op_RESULT_LIST(self, frame: CallFrame, args, opcode):
        frame.registers[args[0]] = list(frame.last_return)

    def _op_LIST_GET(self, frame: CallFrame, args, opcode):
        values = frame.registers.get(args[1]) or []
        index = args[2]
        frame.registers[args[0]] = values[index] if index < len(values) else None

    def _op_RETURN_MULTI(self, frame: CallFrame, args, opcode):
        expand = args[0]
        regs = args[1:]
        values = [frame.registers.get(reg) for reg in regs]
        if expand and values:
            tail = values.pop()
            values.extend(tail or [])
        return values

    def _op_FOR_PREP(self, frame: CallFrame, args, opcode):
        index_reg, limit_reg, step_reg, exit_label = args
        regs = frame.registers
        start = _for_number(regs.get(index_reg), "initial")
        limit = _for_number(regs.get(limit_reg), "limit")
        step = _for_number(regs.get(step_reg), "step")
        if step == 0:
            raise RuntimeError("'for' step is zero")
        if isinstance(start, int) and isinstance(step, int):
            if isinstance(limit, float):
                if math.isnan(limit):
                    self._jump(frame, exit_label)
                    return
                if not math.isinf(limit):
                    limit = math.floor(limit) if step > 0 else math.ceil(limit)
        else:
            start, limit, step = float(start), float(limit), float(step)
        regs[index_reg], regs[limit_reg], regs[step_reg] = start, limit, step
        if (step > 0 and start > limit) or (step < 0 and start < limit):
            self._jump(frame, exit_label)

    def _op_FOR_LOOP(self, frame: CallFrame, args, opcode):
        index_reg, limit_reg, step_reg, body_label = args
        regs = frame.registers
        step = regs[step_reg]
        limit = regs[limit_reg]
        index = regs[index_reg] + step
        if (step > 0 and index <= limit) or (step < 0 and index >= limit):
            regs[index_reg] = index
            self._jump(frame, body_label)

    def _op_TABLE_NEW(self, frame: CallFrame, args, opcode):
        frame.registers[args[0]] = LuaTable()

    def _op_TABLE_GET(self, frame: CallFrame, args, opcode):
        regs = frame.registers
        description = args[3] if len(args) > 3 else ""
        regs[args[0]] = self.index(regs.get(args[1]), regs.get(args[2]), description)

    def _op_TABLE_SET(self, frame: CallFrame, args, opcode):
        regs = frame.registers
        description = args[3] if len(args) > 3 else ""
        self.set_index(regs.get(args[0]), regs.get(args[1]), regs.get(args[2]), description)

    def _op_TABLE_RAWSET(self, frame: CallFrame, args, opcode):
        regs = frame.registers
        regs[args[0]].raw_set(regs.get(args[1]), regs.get(args[2]))

    def _op_TABLE_EXTEND(self, frame: CallFrame, args, opcode):
        table = frame.registers[args[0]]
        for offset, value in enumerate(frame.registers.get(args[1]) or []):
            table.raw_set(args[2] + offset, value)

    def _op_IS_NIL(self, frame: CallFrame, args, opcode):
        frame.registers[args[0]] = frame.registers.get(args[1]) is None


def _both_numbers(left: Any, right: Any) -> bool:
    return (
        isinstance(left, (int, float))
        and isinstance(right, (int, float))
        and not isinstance(left, bool)
        and not isinstance(right, bool)
    )


def _concatenable(value: Any) -> bool:
    return isinstance(value, str) or (isinstance(value, (int, float)) and not isinstance(value, bool))


def _as_concat_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    return number_to_string(value)


def _for_number(value: Any, what: str) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        number = to_number(value) if isinstance(value, str) else None
        if number is None:
            raise RuntimeError(f"'for' {what} value must be a number")
        return number
    return value


def _float_div(a: float, b: float) -> float:
    try:
        return a / b
    except ZeroDivisionError:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)


def _arith(opcode: Opcode, a: Any, b: Any) -> Any:
    both_int = isinstance(a, int) and isinstance(b, int)
    if opcode is Opcode.ADD:
        return wrap_integer(a + b) if both_int else float(a) + float(b)
    if opcode is Opcode.SUB:
        return wrap_integer(a - b) if both_int else float(a) - float(b)
    if opcode is Opcode.MUL:
        return wrap_integer(a * b) if both_int else float(a) * float(b)
    if opcode is Opcode.DIV:
        return _float_div(float(a), float(b))
    if opcode is Opcode.MOD:
        if both_int:
            if b == 0:
                raise RuntimeError("attempt to perform 'n%0'")
            return a % b
        a, b = float(a), float(b)
        if b == 0 or math.isinf(a) or math.isnan(a) or math.isnan(b):
            return math.nan
        if math.isinf(b):
            return a if (a >= 0) == (b > 0) else b
        result = math.fmod(a, b)
        if result != 0 and (result < 0) != (b < 0):
            result += b
        return result
    if opcode is Opcode.IDIV:
        if both_int:
            if b == 0:
                raise RuntimeError("attempt to perform 'n//0'")
            return a // b
        quotient = _float_div(float(a), float(b))
        if math.isinf(quotient) or math.isnan(quotient):
            return quotient
        return float(math.floor(quotient))
    if opcode is Opcode.POW:
        a, b = float(a), float(b)
        try:
            return math.pow(a, b)
        except OverflowError:
            return math.inf
        except ValueError:
            return math.inf if a == 0 else math.nan
    raise RuntimeError(f"unsupported arithmetic opcode {opcode.name}")


def _bitwise(opcode: Opcode, a: int, b: int) -> int:
    if opcode is Opcode.BAND:
        return wrap_integer(a & b)
    if opcode is Opcode.BOR:
        return wrap_integer(a | b)
    if opcode is Opcode.BXOR:
        return wrap_integer(a ^ b)
    if opcode is Opcode.SHL:
        return _shift_left(a, b)
    return _shift_left(a, -b)


def run_source(source: str, vm: Optional[BytecodeVM] = None) -> List[Any]:
    """Compile and run ``source`` on a VM with the standard libraries installed."""
    from .stdlib import install_stdlib

    if vm is None:
        vm = BytecodeVM()
        install_stdlib(vm)
    return vm.execute(source)


__all__ = ["BytecodeVM", "CallFrame", "MAX_CALL_DEPTH", "NativeFrame", "run_source"]
