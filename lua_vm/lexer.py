from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from .errors import LuaSyntaxError

KEYWORDS = {
    "and",
    "break",
    "do",
    "else",
    "elseif",
    "end",
    "false",
    "for",
    "function",
    "goto",
    "if",
    "in",
    "local",
    "nil",
    "not",
    "or",
    "repeat",
    "return",
    "then",
    "true",
    "until",
    "while",
}

_THREE_CHAR_OPS = {"..."}
_TWO_CHAR_OPS = {"==", "~=", "<=", ">=", "//", "..", "<<", ">>", "::"}
_ONE_CHAR_OPS = set("+-*/%^#&~|<>=")
_PUNCTUATION = set("(){}[],;:.")

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "\n": "\n",
}


@dataclass
class Token:
    kind: str
    value: str
    line: int
    column: int

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Token({self.kind!r}, {self.value!r}, {self.line}:{self.column})"


class LuaLexer:
    def __init__(self, source: str, chunkname: str = "?"):
        self.source = source
        self.chunkname = chunkname
        self.length = len(source)
        self.pos = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        if self.source.startswith("#"):
            while self._peek() not in {"\n", "\0"}:
                self._advance()
        while True:
            token = self._next_token()
            if token is None:
                break
            tokens.append(token)
        tokens.append(Token("EOF", "<eof>", self.line, self.column))
        return tokens

    # ------------------------------- internals ---------------------------- #
    def _error(self, message: str, near: str, line: Optional[int] = None) -> LuaSyntaxError:
        return LuaSyntaxError(f"{self.chunkname}:{line or self.line}: {message} near '{near}'")

    def _peek(self, offset: int = 0) -> str:
        idx = self.pos + offset
        if idx >= self.length:
            return "\0"
        return self.source[idx]

    def _advance(self, count: int = 1) -> str:
        ch = ""
        for _ in range(count):
            if self.pos >= self.length:
                return "\0"
            ch = self.source[self.pos]
            self.pos += 1
            if ch == "\n":
                self.line += 1
                self.column = 1
            else:
                self.column += 1
        return ch

    def _long_bracket_level(self) -> int:
        """Return the level of a ``[==[`` opener at the cursor, or -1."""
        if self._peek() != "[":
            return -1
        level = 0
        while self._peek(level + 1) == "=":
            level += 1
        if self._peek(level + 1) == "[":
            return level
        return -1

    def _read_long_bracket(self, level: int, what: str) -> str:
        start_line = self.line
        self._advance(level + 2)
        if self._peek() == "\r":
            self._advance()
        if self._peek() == "\n":
            self._advance()
        closing = "]" + "=" * level + "]"
        end = self.source.find(closing, self.pos)
        if end < 0:
            raise self._error(f"unfinished long {what} (starting at line {start_line})", "<eof>")
        text = self.source[self.pos:end]
        self._advance(end - self.pos + len(closing))
        return text

    def _skip_whitespace_and_comments(self) -> None:
        while True:
            ch = self._peek()
            if ch in " \t\r\n\f\v" and ch != "\0":
                self._advance()
                continue
            if ch == "-" and self._peek(1) == "-":
                self._advance(2)
                level = self._long_bracket_level()
                if level >= 0:
                    self._read_long_bracket(level, "comment")
                    continue
                while self._peek() not in {"\n", "\0"}:
                    self._advance()
                continue
            break

    def _next_token(self) -> Optional[Token]:
        self._skip_whitespace_and_comments()
        start_line, start_col = self.line, self.column
        ch = self._peek()
        if ch == "\0":
            return None

        if ch.isdigit() or (ch == "." and self._peek(1).isdigit()):
            return self._number(start_line, start_col)
        if ch == '"' or ch == "'":
            return self._string(start_line, start_col)
        if ch == "[":
            level = self._long_bracket_level()
            if level >= 0:
                text = self._read_long_bracket(level, "string")
                return Token("STRING", text, start_line, start_col)
        if ch.isalpha() or ch == "_":
            return self._identifier(start_line, start_col)

        three = ch + self._peek(1) + self._peek(2)
        if three in _THREE_CHAR_OPS:
            self._advance(3)
            return Token("VARARG", three, start_line, start_col)
        two = ch + self._peek(1)
        if two == "::":
            self._advance(2)
            return Token("::", two, start_line, start_col)
        if two in _TWO_CHAR_OPS:
            self._advance(2)
            return Token("OP", two, start_line, start_col)
        if ch in _ONE_CHAR_OPS:
            self._advance()
            return Token("OP", ch, start_line, start_col)
        if ch in _PUNCTUATION:
            self._advance()
            return Token(ch, ch, start_line, start_col)

        raise self._error("unexpected symbol", ch)

    def _number(self, line: int, col: int) -> Token:
        start = self.pos
        exponent_marks = "Ee"
        if self._peek() == "0" and self._peek(1) in "xX":
            self._advance(2)
            exponent_marks = "Pp"
        while True:
            ch = self._peek()
            if ch in exponent_marks and ch != "\0":
                self._advance()
                if self._peek() in "+-" and self._peek() != "\0":
                    self._advance()
            elif ch.isalnum() or ch == ".":
                self._advance()
            else:
                break
        value = self.source[start:self.pos]
        return Token("NUMBER", value, line, col)

    def _string(self, line: int, col: int) -> Token:
        quote = self._advance()
        parts: List[str] = []
        while True:
            ch = self._peek()
            if ch == "\0":
                raise self._error("unfinished string", "<eof>", line)
            if ch == "\n":
                raise self._error("unfinished string", quote + "".join(parts), line)
            if ch == quote:
                break
            if ch == "\\":
                self._advance()
                parts.append(self._escape())
                continue
            parts.append(self._advance())
        self._advance()  # closing quote
        return Token("STRING", "".join(parts), line, col)

    def _escape(self) -> str:
        ch = self._peek()
        if ch in _ESCAPES:
            self._advance()
            return _ESCAPES[ch]
        if ch == "x":
            self._advance()
            digits = self._peek() + self._peek(1)
            try:
                value = int(digits, 16)
            except ValueError:
                raise self._error("hexadecimal digit expected", "\\x" + digits) from None
            self._advance(2)
            return chr(value)
        if ch == "z":
            self._advance()
            while self._peek() in " \t\r\n\f\v" and self._peek() != "\0":
                self._advance()
            return ""
        if ch == "u":
            self._advance()
            if self._peek() != "{":
                raise self._error("missing '{' in \\u{xxxx}", "\\u")
            self._advance()
            digits = ""
            while self._peek() != "}":
                if self._peek() == "\0":
                    raise self._error("missing '}' in \\u{xxxx}", "\\u{" + digits)
                digits += self._advance()
            self._advance()
            return chr(int(digits, 16))
        if ch.isdigit():
            digits = ""
            while len(digits) < 3 and self._peek().isdigit():
                digits += self._advance()
            value = int(digits)
            if value > 255:
                raise self._error("decimal escape too large", "\\" + digits)
            return chr(value)
        raise self._error("invalid escape sequence", "\\" + ch)

    def _identifier(self, line: int, col: int) -> Token:
        start = self.pos
        while True:
            ch = self._peek()
            if not (ch.isalnum() or ch == "_"):
                break
            self._advance()
        value = self.source[start:self.pos]
        kind = value if value in KEYWORDS else "IDENT"
        return Token(kind, value, line, col)


__all__ = ["LuaLexer", "Token", "KEYWORDS"]
