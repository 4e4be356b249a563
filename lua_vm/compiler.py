from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .ast import (
    Assignment,
    BinaryOp,
    Block,
    BooleanLiteral,
    BreakStmt,
    CallExpr,
    Chunk,
    DoStmt,
    Expr,
    ExprStmt,
    FieldAccess,
    ForGenericStmt,
    ForNumericStmt,
    FunctionExpr,
    FunctionStmt,
    GotoStmt,
    Identifier,
    IfStmt,
    IndexExpr,
    LabelStmt,
    LocalFunctionStmt,
    MethodCallExpr,
    NilLiteral,
    NumberLiteral,
    ParenExpr,
    RepeatStmt,
    ReturnStmt,
    Stmt,
    StringLiteral,
    TableConstructor,
    UnaryOp,
    VarargExpr,
    WhileStmt,
)
from .bytecode import Instruction, InstructionDebug, Opcode, Program, SourceLocation
from .errors import LuaSyntaxError

MAIN_LABEL = "__main"

_ARITHMETIC = {
    "+": Opcode.ADD,
    "-": Opcode.SUB,
    "*": Opcode.MUL,
    "/": Opcode.DIV,
    "%": Opcode.MOD,
    "//": Opcode.IDIV,
    "^": Opcode.POW,
    "..": Opcode.CONCAT,
    "&": Opcode.BAND,
    "|": Opcode.BOR,
    "~": Opcode.BXOR,
    "<<": Opcode.SHL,
    ">>": Opcode.SHR,
}

_UNARY = {
    "-": Opcode.NEG,
    "not": Opcode.NOT,
    "#": Opcode.LEN,
    "~": Opcode.BNOT,
}

_MULTI_VALUE = (CallExpr, MethodCallExpr, VarargExpr)


class CompileError(LuaSyntaxError):
    pass


@dataclass
class _BlockScope:
    locals: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    gotos: List[Tuple[str, Instruction, Stmt]] = field(default_factory=list)


class _ChunkState:
    """Shared by every function compiled from one chunk."""

    def __init__(self, source_name: str) -> None:
        self.source_name = source_name
        self.blocks: List[List[Instruction]] = []
        self._labels = itertools.count()

    def new_label(self, prefix: str) -> str:
        return f"__{prefix}_{next(self._labels)}"


class LuaCompiler:
    def __init__(
        self,
        chunk_state: _ChunkState,
        parent: Optional["LuaCompiler"] = None,
        *,
        function_name: str = "main chunk",
        vararg: bool = False,
    ):
        self.chunk_state = chunk_state
        self.parent = parent
        self.function_name = function_name
        self.vararg = vararg
        self.instructions: List[Instruction] = []
        self.scopes: List[_BlockScope] = []
        self.upvalues: List[Tuple[str, str, object]] = []
        self.loop_stack: List[str] = []
        self.temp_counter = 0
        self.vararg_reg: Optional[str] = None
        self._last_debug: InstructionDebug | None = None

    # ------------------------------------------------------------------
    @classmethod
    def compile_chunk(cls, chunk: Chunk, *, source_name: str = "?") -> Program:
        state = _ChunkState(source_name)
        compiler = cls(state, function_name="main chunk", vararg=True)
        compiler._compile_function_body(MAIN_LABEL, [], True, chunk.body, chunk.body)
        instructions: List[Instruction] = []
        # main chunk first, nested functions after it
        for block in reversed(state.blocks):
            instructions.extend(block)
        return Program(instructions, source_name)

    def _compile_function_body(self, label: str, params: List[str], vararg: bool, body: Block, node: object) -> None:
        self._emit(Opcode.LABEL, [label], node=node)
        self._push_scope()
        for param in params:
            tmp = self._new_temp()
            self._emit(Opcode.ARG, [tmp], node=node)
            self._declare_local(param, tmp, node)
        if vararg:
            self.vararg_reg = self._new_temp()
            self._emit(Opcode.VARARG, [self.vararg_reg], node=node)
        self._compile_block_statements(body)
        self._pop_scope(function_end=True)
        self._emit(Opcode.RETURN_MULTI, [False], node=None)
        self.chunk_state.blocks.append(self.instructions)

    # ------------------------------------------------------------------
    def _push_scope(self) -> None:
        self.scopes.append(_BlockScope())

    def _pop_scope(self, function_end: bool = False) -> None:
        scope = self.scopes.pop()
        unresolved = []
        for name, inst, node in scope.gotos:
            symbol = scope.labels.get(name)
            if symbol is None:
                unresolved.append((name, inst, node))
            else:
                inst.args[0] = symbol
        if not unresolved:
            return
        if function_end or not self.scopes:
            name, _, node = unresolved[0]
            raise self._error(f"no visible label '{name}' for goto", node)
        self.scopes[-1].gotos.extend(unresolved)

    def _new_temp(self) -> str:
        name = f"__t{self.temp_counter}"
        self.temp_counter += 1
        return name

    def _alloc_cell_reg(self, name: str) -> str:
        reg = f"C_{len(self.scopes) - 1}_{name}_{self.temp_counter}"
        self.temp_counter += 1
        return reg

    def _debug_for(self, node: object | None) -> InstructionDebug | None:
        if node is None:
            return None
        line = int(getattr(node, "line", 0) or 0)
        column = int(getattr(node, "column", 0) or 0)
        location = SourceLocation(self.chunk_state.source_name, line, column)
        return InstructionDebug(location, self.function_name)

    def _emit(self, opcode: Opcode, args, *, node: object | None = None) -> Instruction:
        if isinstance(args, (list, tuple)):
            arg_list = list(args)
        else:
            arg_list = [args]
        debug = self._debug_for(node)
        if debug is not None:
            self._last_debug = debug
        elif self._last_debug is not None:
            debug = self._last_debug
        inst = Instruction(opcode, arg_list, debug)
        self.instructions.append(inst)
        return inst

    def _error(self, message: str, node: object) -> CompileError:
        line = getattr(node, "line", 0)
        return CompileError(f"{self.chunk_state.source_name}:{line}: {message}")

    # ------------------------------------------------------------ name lookup
    def _find_local(self, name: str) -> Optional[str]:
        for scope in reversed(self.scopes):
            if name in scope.locals:
                return scope.locals[name]
        return None

    def _find_upvalue(self, name: str) -> Optional[int]:
        for index, (upname, _, _) in enumerate(self.upvalues):
            if upname == name:
                return index
        if self.parent is None:
            return None
        local = self.parent._find_local(name)
        if local is not None:
            self.upvalues.append((name, "cell", local))
            return len(self.upvalues) - 1
        parent_index = self.parent._find_upvalue(name)
        if parent_index is None:
            return None
        self.upvalues.append((name, "upval", parent_index))
        return len(self.upvalues) - 1

    def _resolve(self, name: str) -> Tuple[str, object]:
        local = self._find_local(name)
        if local is not None:
            return "local", local
        index = self._find_upvalue(name)
        if index is not None:
            return "upvalue", index
        return "global", name

    def _declare_local(self, name: str, value_reg: Optional[str], node: object) -> str:
        cell_reg = self._alloc_cell_reg(name)
        self._emit(Opcode.MAKE_CELL, [cell_reg, value_reg], node=node)
        self.scopes[-1].locals[name] = cell_reg
        return cell_reg

    def _describe(self, expr: Expr) -> str:
        """Name an operand the way runtime error messages refer to it."""
        if isinstance(expr, Identifier):
            kind, _ = self._resolve(expr.name)
            return f"{kind} '{expr.name}'"
        if isinstance(expr, FieldAccess):
            return f"field '{expr.field}'"
        if isinstance(expr, IndexExpr) and isinstance(expr.index, StringLiteral):
            return f"field '{expr.index.value}'"
        if isinstance(expr, MethodCallExpr):
            return f"method '{expr.method}'"
        if isinstance(expr, StringLiteral):
            return f"constant '{expr.value}'"
        return ""

    # ------------------------------------------------------------------ Statements
    def _compile_block(self, block: Block) -> None:
        self._push_scope()
        try:
            self._compile_block_statements(block)
        finally:
            self._pop_scope()

    def _compile_block_statements(self, block: Block) -> None:
        for stmt in block.statements:
            if isinstance(stmt, Assignment):
                self._compile_assignment(stmt)
            elif isinstance(stmt, LocalFunctionStmt):
                self._compile_local_function(stmt)
            elif isinstance(stmt, IfStmt):
                self._compile_if(stmt)
            elif isinstance(stmt, WhileStmt):
                self._compile_while(stmt)
            elif isinstance(stmt, ForNumericStmt):
                self._compile_numeric_for(stmt)
            elif isinstance(stmt, ForGenericStmt):
                self._compile_generic_for(stmt)
            elif isinstance(stmt, RepeatStmt):
                self._compile_repeat(stmt)
            elif isinstance(stmt, DoStmt):
                self._compile_block(stmt.body)
            elif isinstance(stmt, BreakStmt):
                self._compile_break(stmt)
            elif isinstance(stmt, GotoStmt):
                self._compile_goto(stmt)
            elif isinstance(stmt, LabelStmt):
                self._compile_label(stmt)
            elif isinstance(stmt, ReturnStmt):
                self._compile_return(stmt)
            elif isinstance(stmt, FunctionStmt):
                self._compile_function_stmt(stmt)
            elif isinstance(stmt, ExprStmt):
                self._compile_call_like(stmt.expr, want_list=True)
            else:
                raise self._error(f"unsupported statement {type(stmt).__name__}", stmt)

    def _compile_assignment(self, stmt: Assignment) -> None:
        target_count = len(stmt.targets)
        value_regs = self._collect_values(stmt.values, target_count, stmt)

        if stmt.is_local:
            for target, value_reg in zip(stmt.targets, value_regs):
                assert isinstance(target, Identifier)
                self._declare_local(target.name, value_reg, stmt)
            return

        for target, value_reg in zip(stmt.targets, value_regs):
            self._store_target(target, value_reg, stmt)

    def _collect_values(self, values: List[Expr], target_count: int, node: object) -> List[Optional[str]]:
        """Evaluate ``values`` and adjust them to exactly ``target_count`` registers.

        A missing value is represented by ``None`` (nil).
        """
        regs: List[Optional[str]] = []
        total = len(values)
        for idx, expr in enumerate(values):
            is_last = idx == total - 1
            if is_last and isinstance(expr, _MULTI_VALUE):
                needed = target_count - len(regs)
                if needed == 1:
                    regs.append(self._compile_single(expr))
                else:
                    list_reg = self._compile_multi(expr)
                    regs.extend(self._unpack_list(list_reg, max(needed, 0), expr))
            else:
                regs.append(self._compile_single(expr))
        while len(regs) < target_count:
            regs.append(None)
        return regs[:target_count]

    def _unpack_list(self, list_reg: str, count: int, node: Expr) -> List[str]:
        regs: List[str] = []
        for index in range(count):
            dst = self._new_temp()
            self._emit(Opcode.LIST_GET, [dst, list_reg, index], node=node)
            regs.append(dst)
        return regs

    def _store_target(self, target: Expr, value_reg: Optional[str], node: object) -> None:
        if value_reg is None:
            value_reg = self._emit_literal(None, node)
        if isinstance(target, Identifier):
            kind, where = self._resolve(target.name)
            if kind == "local":
                self._emit(Opcode.CELL_SET, [where, value_reg], node=node)
            elif kind == "upvalue":
                self._emit(Opcode.SET_UPVAL, [where, value_reg], node=node)
            else:
                self._emit(Opcode.SET_GLOBAL, [target.name, value_reg], node=node)
            return
        if isinstance(target, FieldAccess):
            table_reg = self._compile_expr(target.table)
            key_reg = self._emit_literal(target.field, target)
            self._emit(Opcode.TABLE_SET, [table_reg, key_reg, value_reg, self._describe(target.table)], node=target)
            return
        if isinstance(target, IndexExpr):
            table_reg = self._compile_expr(target.table)
            index_reg = self._compile_expr(target.index)
            self._emit(Opcode.TABLE_SET, [table_reg, index_reg, value_reg, self._describe(target.table)], node=target)
            return
        raise self._error("cannot assign to this expression", node)

    def _compile_local_function(self, stmt: LocalFunctionStmt) -> None:
        cell_reg = self._declare_local(stmt.name, None, stmt)
        func_reg = self._compile_function_expr(stmt.func)
        self._emit(Opcode.CELL_SET, [cell_reg, func_reg], node=stmt)

    def _compile_function_stmt(self, stmt: FunctionStmt) -> None:
        func_reg = self._compile_function_expr(stmt.func)
        self._store_target(stmt.target, func_reg, stmt)

    def _compile_if(self, stmt: IfStmt) -> None:
        branches = [(stmt.condition, stmt.then_branch)]
        for clause in stmt.elseif_branches:
            branches.append((clause.condition, clause.body))

        end_label = self.chunk_state.new_label("endif")

        for idx, (condition, block) in enumerate(branches):
            has_following = idx < len(branches) - 1 or stmt.else_branch is not None
            false_label = self.chunk_state.new_label("if_next") if has_following else end_label
            cond_reg = self._compile_expr(condition)
            self._emit(Opcode.JZ, [cond_reg, false_label], node=condition)
            self._compile_block(block)
            if has_following:
                self._emit(Opcode.JMP, [end_label], node=stmt)
                self._emit(Opcode.LABEL, [false_label], node=stmt)

        if stmt.else_branch:
            self._compile_block(stmt.else_branch)

        self._emit(Opcode.LABEL, [end_label], node=stmt)

    def _compile_while(self, stmt: WhileStmt) -> None:
        start_label = self.chunk_state.new_label("while_start")
        end_label = self.chunk_state.new_label("while_end")
        self._emit(Opcode.LABEL, [start_label], node=stmt)
        cond_reg = self._compile_expr(stmt.condition)
        self._emit(Opcode.JZ, [cond_reg, end_label], node=stmt)
        self.loop_stack.append(end_label)
        self._compile_block(stmt.body)
        self.loop_stack.pop()
        self._emit(Opcode.JMP, [start_label], node=stmt)
        self._emit(Opcode.LABEL, [end_label], node=stmt)

    def _compile_numeric_for(self, stmt: ForNumericStmt) -> None:
        index_reg = self._new_temp()
        limit_reg = self._new_temp()
        step_reg = self._new_temp()
        self._emit(Opcode.MOV, [index_reg, self._compile_expr(stmt.start)], node=stmt.start)
        self._emit(Opcode.MOV, [limit_reg, self._compile_expr(stmt.limit)], node=stmt.limit)
        if stmt.step is not None:
            self._emit(Opcode.MOV, [step_reg, self._compile_expr(stmt.step)], node=stmt.step)
        else:
            self._emit(Opcode.LOAD_CONST, [step_reg, 1], node=stmt)

        body_label = self.chunk_state.new_label("for_body")
        end_label = self.chunk_state.new_label("for_end")
        self._emit(Opcode.FOR_PREP, [index_reg, limit_reg, step_reg, end_label], node=stmt)
        self._emit(Opcode.LABEL, [body_label], node=stmt)
        self._push_scope()
        self._declare_local(stmt.var, index_reg, stmt)
        self.loop_stack.append(end_label)
        self._compile_block(stmt.body)
        self.loop_stack.pop()
        self._pop_scope()
        self._emit(Opcode.FOR_LOOP, [index_reg, limit_reg, step_reg, body_label], node=stmt)
        self._emit(Opcode.LABEL, [end_label], node=stmt)

    def _compile_generic_for(self, stmt: ForGenericStmt) -> None:
        values = self._collect_values(stmt.iter_exprs, 3, stmt)
        iter_func_reg = self._new_temp()
        state_reg = self._new_temp()
        control_reg = self._new_temp()
        for dst, src in zip((iter_func_reg, state_reg, control_reg), values):
            if src is None:
                self._emit(Opcode.LOAD_CONST, [dst, None], node=stmt)
            else:
                self._emit(Opcode.MOV, [dst, src], node=stmt)

        loop_label = self.chunk_state.new_label("forgen_loop")
        end_label = self.chunk_state.new_label("forgen_end")

        self._emit(Opcode.LABEL, [loop_label], node=stmt)
        self._emit(Opcode.PARAM, [state_reg], node=stmt)
        self._emit(Opcode.PARAM, [control_reg], node=stmt)
        self._emit(Opcode.CALL_VALUE, [iter_func_reg, "for iterator 'for iterator'"], node=stmt)
        result_list = self._new_temp()
        self._emit(Opcode.RESULT_LIST, [result_list], node=stmt)
        first_value = self._new_temp()
        self._emit(Opcode.LIST_GET, [first_value, result_list, 0], node=stmt)
        nil_check = self._new_temp()
        self._emit(Opcode.IS_NIL, [nil_check, first_value], node=stmt)
        self._emit(Opcode.JNZ, [nil_check, end_label], node=stmt)
        self._emit(Opcode.MOV, [control_reg, first_value], node=stmt)

        self._push_scope()
        for idx, name in enumerate(stmt.names):
            if idx == 0:
                value_reg = first_value
            else:
                value_reg = self._new_temp()
                self._emit(Opcode.LIST_GET, [value_reg, result_list, idx], node=stmt)
            self._declare_local(name, value_reg, stmt)
        self.loop_stack.append(end_label)
        self._compile_block(stmt.body)
        self.loop_stack.pop()
        self._pop_scope()
        self._emit(Opcode.JMP, [loop_label], node=stmt)
        self._emit(Opcode.LABEL, [end_label], node=stmt)

    def _compile_repeat(self, stmt: RepeatStmt) -> None:
        start_label = self.chunk_state.new_label("repeat_start")
        end_label = self.chunk_state.new_label("repeat_end")
        self._emit(Opcode.LABEL, [start_label], node=stmt)
        self.loop_stack.append(end_label)
        self._push_scope()
        try:
            # the condition sees the body's locals
            self._compile_block_statements(stmt.body)
            cond_reg = self._compile_expr(stmt.condition)
            self._emit(Opcode.JZ, [cond_reg, start_label], node=stmt.condition)
        finally:
            self._pop_scope()
            self.loop_stack.pop()
        self._emit(Opcode.LABEL, [end_label], node=stmt)

    def _compile_break(self, stmt: BreakStmt) -> None:
        if not self.loop_stack:
            raise self._error("break outside a loop", stmt)
        self._emit(Opcode.JMP, [self.loop_stack[-1]], node=stmt)

    def _compile_goto(self, stmt: GotoStmt) -> None:
        inst = self._emit(Opcode.JMP, [None], node=stmt)
        self.scopes[-1].gotos.append((stmt.label, inst, stmt))

    def _compile_label(self, stmt: LabelStmt) -> None:
        for scope in self.scopes:
            if stmt.name in scope.labels:
                raise self._error(f"label '{stmt.name}' already defined", stmt)
        symbol = self.chunk_state.new_label(f"label_{stmt.name}")
        self.scopes[-1].labels[stmt.name] = symbol
        self._emit(Opcode.LABEL, [symbol], node=stmt)

    def _compile_return(self, stmt: ReturnStmt) -> None:
        regs: List[str] = []
        expand = False
        total = len(stmt.values)
        for idx, expr in enumerate(stmt.values):
            if idx == total - 1 and isinstance(expr, _MULTI_VALUE):
                regs.append(self._compile_multi(expr))
                expand = True
            else:
                regs.append(self._compile_single(expr))
        self._emit(Opcode.RETURN_MULTI, [expand] + regs, node=stmt)

    # ------------------------------------------------------------------ Expressions
    def _compile_single(self, expr: Expr) -> str:
        """Compile ``expr`` truncated to exactly one value."""
        if isinstance(expr, (CallExpr, MethodCallExpr)):
            return self._compile_call_like(expr)
        return self._compile_expr(expr)

    def _compile_multi(self, expr: Expr) -> str:
        """Compile a multi-value expression into a register holding a list."""
        if isinstance(expr, VarargExpr):
            return self._compile_vararg_expr(multi=True, node=expr)
        return self._compile_call_like(expr, want_list=True)

    def _compile_expr(self, expr: Expr) -> str:
        if isinstance(expr, (NumberLiteral, StringLiteral, BooleanLiteral)):
            return self._emit_literal(expr.value, expr)
        if isinstance(expr, NilLiteral):
            return self._emit_literal(None, expr)
        if isinstance(expr, Identifier):
            return self._read_identifier(expr)
        if isinstance(expr, ParenExpr):
            return self._compile_single(expr.expr)
        if isinstance(expr, UnaryOp):
            operand = self._compile_expr(expr.operand)
            dst = self._new_temp()
            opcode = _UNARY.get(expr.op)
            if opcode is None:
                raise self._error(f"unsupported unary operator {expr.op}", expr)
            self._emit(opcode, [dst, operand, self._describe(expr.operand)], node=expr)
            return dst
        if isinstance(expr, BinaryOp):
            return self._compile_binary(expr)
        if isinstance(expr, (CallExpr, MethodCallExpr)):
            return self._compile_call_like(expr)
        if isinstance(expr, FunctionExpr):
            return self._compile_function_expr(expr)
        if isinstance(expr, VarargExpr):
            return self._compile_vararg_expr(multi=False, node=expr)
        if isinstance(expr, FieldAccess):
            table_reg = self._compile_expr(expr.table)
            key_reg = self._emit_literal(expr.field, expr)
            dst = self._new_temp()
            self._emit(Opcode.TABLE_GET, [dst, table_reg, key_reg, self._describe(expr.table)], node=expr)
            return dst
        if isinstance(expr, IndexExpr):
            table_reg = self._compile_expr(expr.table)
            index_reg = self._compile_expr(expr.index)
            dst = self._new_temp()
            self._emit(Opcode.TABLE_GET, [dst, table_reg, index_reg, self._describe(expr.table)], node=expr)
            return dst
        if isinstance(expr, TableConstructor):
            return self._compile_table_constructor(expr)
        raise self._error(f"unsupported expression {type(expr).__name__}", expr)

    def _compile_binary(self, expr: BinaryOp) -> str:
        op = expr.op
        if op in ("and", "or"):
            left = self._compile_expr(expr.left)
            result = self._new_temp()
            self._emit(Opcode.MOV, [result, left], node=expr.left)
            skip_label = self.chunk_state.new_label("logic_skip")
            jump = Opcode.JZ if op == "and" else Opcode.JNZ
            self._emit(jump, [left, skip_label], node=expr)
            right = self._compile_expr(expr.right)
            self._emit(Opcode.MOV, [result, right], node=expr.right)
            self._emit(Opcode.LABEL, [skip_label], node=expr)
            return result

        left = self._compile_expr(expr.left)
        right = self._compile_expr(expr.right)
        dst = self._new_temp()

        if op in _ARITHMETIC:
            args = [dst, left, right, self._describe(expr.left), self._describe(expr.right)]
            self._emit(_ARITHMETIC[op], args, node=expr)
            return dst
        if op == "==":
            self._emit(Opcode.EQ, [dst, left, right], node=expr)
        elif op == "~=":
            tmp = self._new_temp()
            self._emit(Opcode.EQ, [tmp, left, right], node=expr)
            self._emit(Opcode.NOT, [dst, tmp], node=expr)
        elif op == "<":
            self._emit(Opcode.LT, [dst, left, right], node=expr)
        elif op == "<=":
            self._emit(Opcode.LE, [dst, left, right], node=expr)
        elif op == ">":
            self._emit(Opcode.LT, [dst, right, left], node=expr)
        elif op == ">=":
            self._emit(Opcode.LE, [dst, right, left], node=expr)
        else:
            raise self._error(f"unsupported binary operator {op}", expr)
        return dst

    def _compile_call_like(self, expr: Expr, want_list: bool = False) -> str:
        if isinstance(expr, CallExpr):
            callee_reg = self._compile_expr(expr.callee)
            prepared = []
            description = self._describe(expr.callee)
        elif isinstance(expr, MethodCallExpr):
            receiver_reg = self._compile_expr(expr.receiver)
            key_reg = self._emit_literal(expr.method, expr)
            callee_reg = self._new_temp()
            self._emit(
                Opcode.TABLE_GET,
                [callee_reg, receiver_reg, key_reg, self._describe(expr.receiver)],
                node=expr,
            )
            prepared = [(receiver_reg, False)]
            description = self._describe(expr)
        else:
            raise self._error("syntax error", expr)

        total_args = len(expr.args)
        for idx, arg in enumerate(expr.args):
            if idx == total_args - 1 and isinstance(arg, _MULTI_VALUE):
                prepared.append((self._compile_multi(arg), True))
            else:
                prepared.append((self._compile_single(arg), False))
        for reg, expand in prepared:
            opcode = Opcode.PARAM_EXPAND if expand else Opcode.PARAM
            self._emit(opcode, [reg], node=expr)
        self._emit(Opcode.CALL_VALUE, [callee_reg, description], node=expr)
        dst = self._new_temp()
        self._emit(Opcode.RESULT_LIST if want_list else Opcode.RESULT, [dst], node=expr)
        return dst

    def _compile_function_expr(self, expr: FunctionExpr) -> str:
        label = self.chunk_state.new_label("func")
        child = LuaCompiler(
            self.chunk_state,
            self,
            function_name=expr.name,
            vararg=expr.vararg,
        )
        child._compile_function_body(label, expr.params, expr.vararg, expr.body, expr)

        dst = self._new_temp()
        captures = [(kind, source) for _, kind, source in child.upvalues]
        self._emit(Opcode.CLOSURE, [dst, label, expr.name] + captures, node=expr)
        return dst

    def _compile_vararg_expr(self, multi: bool, node: VarargExpr) -> str:
        if self.vararg_reg is None:
            raise self._error("cannot use '...' outside a vararg function", node)
        if multi:
            return self.vararg_reg
        head = self._new_temp()
        self._emit(Opcode.VARARG_FIRST, [head, self.vararg_reg], node=node)
        return head

    # ------------------------------------------------------------------ Helpers
    def _emit_literal(self, value, node: object) -> str:
        dst = self._new_temp()
        self._emit(Opcode.LOAD_CONST, [dst, value], node=node)
        return dst

    def _read_identifier(self, expr: Identifier) -> str:
        kind, where = self._resolve(expr.name)
        dst = self._new_temp()
        if kind == "local":
            self._emit(Opcode.CELL_GET, [dst, where], node=expr)
        elif kind == "upvalue":
            self._emit(Opcode.GET_UPVAL, [dst, where], node=expr)
        else:
            self._emit(Opcode.GET_GLOBAL, [dst, expr.name], node=expr)
        return dst

    def _compile_table_constructor(self, expr: TableConstructor) -> str:
        table_reg = self._new_temp()
        self._emit(Opcode.TABLE_NEW, [table_reg], node=expr)
        total = len(expr.fields)
        position = 1
        for idx, item in enumerate(expr.fields):
            value_node = item.value
            if item.key is not None or item.name is not None:
                if item.key is not None:
                    key_reg = self._compile_expr(item.key)
                else:
                    key_reg = self._emit_literal(item.name, value_node)
                value_reg = self._compile_single(item.value)
                self._emit(Opcode.TABLE_SET, [table_reg, key_reg, value_reg, ""], node=value_node)
                continue
            if idx == total - 1 and isinstance(item.value, _MULTI_VALUE):
                list_reg = self._compile_multi(item.value)
                self._emit(Opcode.TABLE_EXTEND, [table_reg, list_reg, position], node=value_node)
                continue
            value_reg = self._compile_single(item.value)
            key_reg = self._emit_literal(position, value_node)
            self._emit(Opcode.TABLE_RAWSET, [table_reg, key_reg, value_reg], node=value_node)
            position += 1
        return table_reg


def compile_chunk(chunk: Chunk, source_name: str = "?") -> Program:
    return LuaCompiler.compile_chunk(chunk, source_name=source_name)


__all__ = ["LuaCompiler", "CompileError", "MAIN_LABEL", "compile_chunk"]
