from __future__ import annotations

from typing import List, Optional, Tuple

from .ast import (
    Assignment,
    BinaryOp,
    Block,
    BooleanLiteral,
    BreakStmt,
    CallExpr,
    Chunk,
    DoStmt,
    ElseIfClause,
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
    TableField,
    UnaryOp,
    VarargExpr,
    WhileStmt,
)
from .errors import LuaSyntaxError
from .lexer import LuaLexer, Token
from .values import str_to_number

# (left, right) binding power of each binary operator.
BINARY_PRIORITY = {
    "or": (1, 1),
    "and": (2, 2),
    "<": (3, 3),
    ">": (3, 3),
    "<=": (3, 3),
    ">=": (3, 3),
    "~=": (3, 3),
    "==": (3, 3),
    "|": (4, 4),
    "~": (5, 5),
    "&": (6, 6),
    "<<": (7, 7),
    ">>": (7, 7),
    "..": (9, 8),
    "+": (10, 10),
    "-": (10, 10),
    "*": (11, 11),
    "/": (11, 11),
    "//": (11, 11),
    "%": (11, 11),
    "^": (14, 13),
}
UNARY_PRIORITY = 12

_BLOCK_END = {"EOF", "end", "else", "elseif", "until"}


class ParserError(LuaSyntaxError):
    pass


class LuaParser:
    def __init__(self, tokens: List[Token], chunkname: str = "?"):
        self.tokens = tokens
        self.pos = 0
        self.chunkname = chunkname

    @classmethod
    def parse(cls, source: str, chunkname: str = "?") -> Chunk:
        lexer = LuaLexer(source, chunkname)
        tokens = lexer.tokenize()
        parser = cls(tokens, chunkname)
        return parser._parse_chunk()

    # ------------------------------------------------------------------
    def _current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self._current()
        if token.kind != "EOF":
            self.pos += 1
        return token

    def _peek_kind(self, offset: int = 1) -> str:
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return "EOF"
        return self.tokens[idx].kind

    def _check_op(self, symbol: str) -> bool:
        token = self._current()
        return token.kind == "OP" and token.value == symbol

    def _match(self, *kinds: str) -> Optional[Token]:
        if self._current().kind in kinds:
            return self._advance()
        return None

    def _error(self, message: str, token: Optional[Token] = None) -> ParserError:
        token = token or self._current()
        near = "<eof>" if token.kind == "EOF" else f"'{token.value}'"
        return ParserError(f"{self.chunkname}:{token.line}: {message} near {near}")

    def _expect(self, kind: str) -> Token:
        token = self._current()
        if token.kind != kind:
            what = "<name>" if kind == "IDENT" else kind
            raise self._error(f"'{what}' expected" if kind != "IDENT" else f"{what} expected")
        return self._advance()

    def _expect_closing(self, kind: str, opener: str, line: int) -> Token:
        token = self._current()
        if token.kind == kind:
            return self._advance()
        if token.line == line:
            raise self._error(f"'{kind}' expected")
        raise self._error(f"'{kind}' expected (to close '{opener}' at line {line})")

    def _expect_op(self, symbol: str) -> Token:
        if not self._check_op(symbol):
            raise self._error(f"'{symbol}' expected")
        return self._advance()

    # ------------------------------------------------------------ statements
    def _parse_chunk(self) -> Chunk:
        block = self._parse_block()
        if self._current().kind != "EOF":
            raise self._error("'<eof>' expected")
        return Chunk(block)

    def _parse_block(self) -> Block:
        statements: List[Stmt] = []
        while self._current().kind not in _BLOCK_END:
            if self._current().kind == "return":
                statements.append(self._parse_return())
                break
            stmt = self._parse_statement()
            if stmt is not None:
                statements.append(stmt)
        return Block(statements)

    def _parse_statement(self) -> Optional[Stmt]:
        token = self._current()
        kind = token.kind
        if kind == ";":
            self._advance()
            return None
        if kind == "if":
            return self._parse_if()
        if kind == "while":
            return self._parse_while()
        if kind == "do":
            self._advance()
            body = self._parse_block()
            self._expect_closing("end", "do", token.line)
            return DoStmt(token.line, token.column, body)
        if kind == "for":
            return self._parse_for()
        if kind == "repeat":
            return self._parse_repeat()
        if kind == "function":
            return self._parse_function_stmt()
        if kind == "local":
            self._advance()
            if self._match("function"):
                return self._parse_local_function(token)
            return self._parse_local_assignment(token)
        if kind == "::":
            self._advance()
            name = self._expect("IDENT")
            self._expect("::")
            return LabelStmt(token.line, token.column, name.value)
        if kind == "break":
            self._advance()
            return BreakStmt(token.line, token.column)
        if kind == "goto":
            self._advance()
            name = self._expect("IDENT")
            return GotoStmt(token.line, token.column, name.value)
        return self._parse_assignment_or_call()

    def _parse_if(self) -> IfStmt:
        if_tok = self._expect("if")
        condition = self._parse_expression()
        self._expect("then")
        then_block = self._parse_block()
        elseifs: List[ElseIfClause] = []
        else_block = None
        while self._current().kind == "elseif":
            tok = self._advance()
            cond = self._parse_expression()
            self._expect("then")
            body = self._parse_block()
            elseifs.append(ElseIfClause(tok.line, tok.column, cond, body))
        if self._match("else"):
            else_block = self._parse_block()
        self._expect_closing("end", "if", if_tok.line)
        return IfStmt(if_tok.line, if_tok.column, condition, then_block, elseifs, else_block)

    def _parse_while(self) -> WhileStmt:
        tok = self._expect("while")
        condition = self._parse_expression()
        self._expect("do")
        body = self._parse_block()
        self._expect_closing("end", "while", tok.line)
        return WhileStmt(tok.line, tok.column, condition, body)

    def _parse_repeat(self) -> RepeatStmt:
        tok = self._expect("repeat")
        body = self._parse_block()
        self._expect_closing("until", "repeat", tok.line)
        condition = self._parse_expression()
        return RepeatStmt(tok.line, tok.column, body, condition)

    def _parse_for(self) -> Stmt:
        tok = self._expect("for")
        first = self._expect("IDENT")
        if self._check_op("="):
            self._advance()
            start = self._parse_expression()
            self._expect(",")
            limit = self._parse_expression()
            step = None
            if self._match(","):
                step = self._parse_expression()
            self._expect("do")
            body = self._parse_block()
            self._expect_closing("end", "for", tok.line)
            return ForNumericStmt(tok.line, tok.column, first.value, start, limit, step, body)
        names = [first.value]
        while self._match(","):
            names.append(self._expect("IDENT").value)
        if self._current().kind != "in":
            raise self._error("'=' or 'in' expected")
        self._advance()
        iter_exprs = self._parse_expression_list()
        self._expect("do")
        body = self._parse_block()
        self._expect_closing("end", "for", tok.line)
        return ForGenericStmt(tok.line, tok.column, names, iter_exprs, body)

    def _parse_return(self) -> ReturnStmt:
        tok = self._expect("return")
        values: List[Expr] = []
        if self._current().kind not in _BLOCK_END and self._current().kind != ";":
            values = self._parse_expression_list()
        self._match(";")
        if self._current().kind not in _BLOCK_END:
            raise self._error("'<eof>' expected" if self._current().kind != "EOF" else "'end' expected")
        return ReturnStmt(tok.line, tok.column, values)

    def _parse_function_stmt(self) -> FunctionStmt:
        tok = self._expect("function")
        name_tok = self._expect("IDENT")
        target: Expr = Identifier(name_tok.line, name_tok.column, name_tok.value)
        full_name = name_tok.value
        is_method = False
        while True:
            if self._current().kind == ".":
                self._advance()
                key = self._expect("IDENT")
                target = FieldAccess(key.line, key.column, target, key.value)
                full_name += "." + key.value
                continue
            if self._current().kind == ":":
                self._advance()
                key = self._expect("IDENT")
                target = FieldAccess(key.line, key.column, target, key.value)
                full_name += ":" + key.value
                is_method = True
            break
        func = self._parse_function_body(tok, full_name, is_method)
        return FunctionStmt(tok.line, tok.column, target, func)

    def _parse_function_body(self, tok: Token, name: str, is_method: bool = False) -> FunctionExpr:
        params, vararg = self._parse_param_list()
        if is_method:
            params.insert(0, "self")
        body = self._parse_block()
        self._expect_closing("end", "function", tok.line)
        return FunctionExpr(tok.line, tok.column, params, vararg, body, name)

    def _parse_param_list(self) -> Tuple[List[str], bool]:
        params: List[str] = []
        vararg = False
        self._expect("(")
        if self._current().kind != ")":
            while True:
                if self._current().kind == "VARARG":
                    self._advance()
                    vararg = True
                    break
                if self._current().kind != "IDENT":
                    raise self._error("<name> expected")
                params.append(self._advance().value)
                if not self._match(","):
                    break
        self._expect(")")
        return params, vararg

    def _parse_local_function(self, local_tok: Token) -> LocalFunctionStmt:
        name_tok = self._expect("IDENT")
        func = self._parse_function_body(local_tok, name_tok.value)
        return LocalFunctionStmt(local_tok.line, local_tok.column, name_tok.value, func)

    def _parse_local_assignment(self, tok: Token) -> Assignment:
        names: List[Expr] = []
        while True:
            name_tok = self._expect("IDENT")
            names.append(Identifier(name_tok.line, name_tok.column, name_tok.value))
            if self._check_op("<"):
                self._advance()
                attrib = self._expect("IDENT")
                if attrib.value not in {"const", "close"}:
                    raise self._error(f"unknown attribute '{attrib.value}'", attrib)
                self._expect_op(">")
            if not self._match(","):
                break
        values: List[Expr] = []
        if self._check_op("="):
            self._advance()
            values = self._parse_expression_list()
        return Assignment(tok.line, tok.column, names, values, True)

    def _parse_assignment_or_call(self) -> Stmt:
        start = self._current()
        expr = self._parse_suffixed_expression()
        if self._check_op("=") or self._current().kind == ",":
            targets: List[Expr] = [expr]
            while self._match(","):
                targets.append(self._parse_suffixed_expression())
            for target in targets:
                if not self._is_assignable(target):
                    raise self._error("syntax error")
            self._expect_op("=")
            values = self._parse_expression_list()
            return Assignment(start.line, start.column, targets, values, False)
        if not isinstance(expr, (CallExpr, MethodCallExpr)):
            raise self._error("syntax error")
        return ExprStmt(start.line, start.column, expr)

    def _parse_expression_list(self) -> List[Expr]:
        values: List[Expr] = [self._parse_expression()]
        while self._match(","):
            values.append(self._parse_expression())
        return values

    def _is_assignable(self, expr: Expr) -> bool:
        return isinstance(expr, (Identifier, FieldAccess, IndexExpr))

    # ------------------------ expression parsing ------------------------- #
    def _parse_expression(self, limit: int = 0) -> Expr:
        token = self._current()
        if token.kind == "not" or (token.kind == "OP" and token.value in {"-", "#", "~"}):
            op_tok = self._advance()
            operand = self._parse_expression(UNARY_PRIORITY)
            expr: Expr = UnaryOp(op_tok.line, op_tok.column, op_tok.value, operand)
        else:
            expr = self._parse_simple_expression()
        while True:
            token = self._current()
            op = token.value if token.kind in {"OP", "and", "or"} else None
            if op is None or op not in BINARY_PRIORITY:
                break
            left, right = BINARY_PRIORITY[op]
            if left <= limit:
                break
            op_tok = self._advance()
            rhs = self._parse_expression(right)
            expr = BinaryOp(op_tok.line, op_tok.column, expr, op, rhs)
        return expr

    def _parse_simple_expression(self) -> Expr:
        token = self._current()
        if token.kind == "NUMBER":
            tok = self._advance()
            value = str_to_number(tok.value)
            if value is None:
                raise self._error("malformed number", tok)
            return NumberLiteral(tok.line, tok.column, value)
        if token.kind == "STRING":
            tok = self._advance()
            return StringLiteral(tok.line, tok.column, tok.value)
        if token.kind == "nil":
            tok = self._advance()
            return NilLiteral(tok.line, tok.column)
        if token.kind == "true":
            tok = self._advance()
            return BooleanLiteral(tok.line, tok.column, True)
        if token.kind == "false":
            tok = self._advance()
            return BooleanLiteral(tok.line, tok.column, False)
        if token.kind == "VARARG":
            tok = self._advance()
            return VarargExpr(tok.line, tok.column)
        if token.kind == "{":
            return self._parse_table_constructor()
        if token.kind == "function":
            tok = self._advance()
            return self._parse_function_body(tok, "anonymous")
        return self._parse_suffixed_expression()

    def _parse_primary_expression(self) -> Expr:
        token = self._current()
        if token.kind == "IDENT":
            tok = self._advance()
            return Identifier(tok.line, tok.column, tok.value)
        if token.kind == "(":
            tok = self._advance()
            inner = self._parse_expression()
            self._expect_closing(")", "(", tok.line)
            return ParenExpr(tok.line, tok.column, inner)
        raise self._error("unexpected symbol")

    def _parse_suffixed_expression(self) -> Expr:
        expr = self._parse_primary_expression()
        while True:
            token = self._current()
            if token.kind == ".":
                self._advance()
                name_tok = self._expect("IDENT")
                expr = FieldAccess(name_tok.line, name_tok.column, expr, name_tok.value)
                continue
            if token.kind == "[":
                bracket_tok = self._advance()
                index_expr = self._parse_expression()
                self._expect("]")
                expr = IndexExpr(bracket_tok.line, bracket_tok.column, expr, index_expr)
                continue
            if token.kind == ":":
                colon_tok = self._advance()
                name_tok = self._expect("IDENT")
                args = self._parse_call_arguments()
                expr = MethodCallExpr(colon_tok.line, colon_tok.column, expr, name_tok.value, args)
                continue
            if token.kind in {"(", "{", "STRING"}:
                args = self._parse_call_arguments()
                expr = CallExpr(token.line, token.column, expr, args)
                continue
            break
        return expr

    def _parse_call_arguments(self) -> List[Expr]:
        token = self._current()
        if token.kind == "STRING":
            tok = self._advance()
            return [StringLiteral(tok.line, tok.column, tok.value)]
        if token.kind == "{":
            return [self._parse_table_constructor()]
        if token.kind != "(":
            raise self._error("function arguments expected")
        lparen = self._advance()
        args: List[Expr] = []
        if self._current().kind != ")":
            args = self._parse_expression_list()
        self._expect_closing(")", "(", lparen.line)
        return args

    def _parse_table_constructor(self) -> TableConstructor:
        start = self._expect("{")
        fields: List[TableField] = []
        while self._current().kind != "}":
            if self._current().kind == "[":
                self._advance()
                key_expr = self._parse_expression()
                self._expect("]")
                self._expect_op("=")
                value_expr = self._parse_expression()
                fields.append(TableField(value_expr, key=key_expr))
            elif (
                self._current().kind == "IDENT"
                and self._peek_kind(1) == "OP"
                and self.tokens[self.pos + 1].value == "="
            ):
                name_tok = self._advance()
                self._expect_op("=")
                value_expr = self._parse_expression()
                fields.append(TableField(value_expr, name=name_tok.value))
            else:
                value_expr = self._parse_expression()
                fields.append(TableField(value_expr))
            if not self._match(",") and not self._match(";"):
                break
        self._expect_closing("}", "{", start.line)
        return TableConstructor(start.line, start.column, fields)


__all__ = ["LuaParser", "ParserError", "BINARY_PRIORITY", "UNARY_PRIORITY"]
