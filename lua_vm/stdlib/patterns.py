"""Lua pattern matching.

A backtracking matcher over Python strings implementing Lua 5.4 pattern
syntax: character classes, sets, the ``* + - ?`` quantifiers, anchors,
captures (including position captures), back references, ``%b`` and ``%f``.
"""

from __future__ import annotations

import string
from typing import Any, List, Optional

L_ESC = "%"
SPECIALS = "^$*+?.([%-"
MAX_CAPTURES = 32
MAX_MATCH_DEPTH = 200

CAP_UNFINISHED = -1
CAP_POSITION = -2

_PUNCT = set(string.punctuation)
_SPACE = set(" \t\n\r\x0b\x0c")
_HEX = set(string.hexdigits)


class PatternError(RuntimeError):
    pass


def _is_class(c: str, cl: str) -> bool:
    code = ord(c)
    lower = cl.lower()
    if lower == "a":
        res = c.isascii() and c.isalpha()
    elif lower == "c":
        res = code < 32 or code == 127
    elif lower == "d":
        res = "0" <= c <= "9"
    elif lower == "g":
        res = 33 <= code <= 126
    elif lower == "l":
        res = "a" <= c <= "z"
    elif lower == "p":
        res = c in _PUNCT
    elif lower == "s":
        res = c in _SPACE
    elif lower == "u":
        res = "A" <= c <= "Z"
    elif lower == "w":
        res = c.isascii() and c.isalnum()
    elif lower == "x":
        res = c in _HEX
    else:
        return cl == c
    if cl.isupper():
        return not res
    return res


class MatchState:
    def __init__(self, src: str, pattern: str) -> None:
        self.src = src
        self.pattern = pattern
        self.level = 0
        self.capture: List[List[int]] = []
        self.depth = MAX_MATCH_DEPTH

    def reset(self) -> None:
        self.level = 0
        self.capture = []
        self.depth = MAX_MATCH_DEPTH

    # ------------------------------------------------------------------ classes
    def class_end(self, p: int) -> int:
        pat = self.pattern
        plen = len(pat)
        c = pat[p]
        p += 1
        if c == L_ESC:
            if p >= plen:
                raise PatternError("malformed pattern (ends with '%')")
            return p + 1
        if c == "[":
            if p < plen and pat[p] == "^":
                p += 1
            while True:
                if p >= plen:
                    raise PatternError("malformed pattern (missing ']')")
                cc = pat[p]
                p += 1
                if cc == L_ESC and p < plen:
                    p += 1
                if p < plen and pat[p] == "]":
                    return p + 1
        return p

    def match_bracket_class(self, c: str, p: int, ec: int) -> bool:
        pat = self.pattern
        sig = True
        if pat[p + 1] == "^":
            sig = False
            p += 1
        p += 1
        while p < ec:
            if pat[p] == L_ESC:
                p += 1
                if _is_class(c, pat[p]):
                    return sig
            elif p + 2 < ec and pat[p + 1] == "-":
                if pat[p] <= c <= pat[p + 2]:
                    return sig
                p += 2
            elif pat[p] == c:
                return sig
            p += 1
        return not sig

    def single_match(self, s: int, p: int, ep: int) -> bool:
        if s >= len(self.src):
            return False
        c = self.src[s]
        pc = self.pattern[p]
        if pc == ".":
            return True
        if pc == L_ESC:
            return _is_class(c, self.pattern[p + 1])
        if pc == "[":
            return self.match_bracket_class(c, p, ep - 1)
        return pc == c

    # ------------------------------------------------------------------ matching
    def match(self, s: int, p: int) -> Optional[int]:
        """Match the pattern from ``p`` against the subject from ``s``; return the end or None."""
        self.depth -= 1
        if self.depth == 0:
            raise PatternError("pattern too complex")
        try:
            return self._match(s, p)
        finally:
            self.depth += 1

    def _match(self, s: int, p: int) -> Optional[int]:
        pat = self.pattern
        plen = len(pat)
        while True:
            if p == plen:
                return s
            c = pat[p]
            if c == "(":
                if p + 1 < plen and pat[p + 1] == ")":
                    return self.start_capture(s, p + 2, CAP_POSITION)
                return self.start_capture(s, p + 1, CAP_UNFINISHED)
            if c == ")":
                return self.end_capture(s, p + 1)
            if c == "$" and p + 1 == plen:
                return s if s == len(self.src) else None
            if c == L_ESC and p + 1 < plen:
                nc = pat[p + 1]
                if nc == "b":
                    s = self.match_balance(s, p + 2)
                    if s is None:
                        return None
                    p += 4
                    continue
                if nc == "f":
                    p += 2
                    if p >= plen or pat[p] != "[":
                        raise PatternError("missing '[' after '%f' in pattern")
                    ep = self.class_end(p)
                    previous = self.src[s - 1] if s > 0 else "\0"
                    current = self.src[s] if s < len(self.src) else "\0"
                    if not self.match_bracket_class(previous, p, ep - 1) and self.match_bracket_class(
                        current, p, ep - 1
                    ):
                        p = ep
                        continue
                    return None
                if "0" <= nc <= "9":
                    s = self.match_capture(s, nc)
                    if s is None:
                        return None
                    p += 2
                    continue
            ep = self.class_end(p)
            suffix = pat[ep] if ep < plen else ""
            if not self.single_match(s, p, ep):
                if suffix in ("*", "?", "-"):
                    p = ep + 1
                    continue
                return None
            if suffix == "?":
                result = self.match(s + 1, ep + 1)
                if result is not None:
                    return result
                p = ep + 1
                continue
            if suffix == "+":
                return self.max_expand(s + 1, p, ep)
            if suffix == "*":
                return self.max_expand(s, p, ep)
            if suffix == "-":
                return self.min_expand(s, p, ep)
            s += 1
            p = ep

    def max_expand(self, s: int, p: int, ep: int) -> Optional[int]:
        count = 0
        while self.single_match(s + count, p, ep):
            count += 1
        while count >= 0:
            result = self.match(s + count, ep + 1)
            if result is not None:
                return result
            count -= 1
        return None

    def min_expand(self, s: int, p: int, ep: int) -> Optional[int]:
        while True:
            result = self.match(s, ep + 1)
            if result is not None:
                return result
            if self.single_match(s, p, ep):
                s += 1
            else:
                return None

    def start_capture(self, s: int, p: int, what: int) -> Optional[int]:
        if self.level >= MAX_CAPTURES:
            raise PatternError("too many captures")
        self.capture.append([s, what])
        self.level += 1
        result = self.match(s, p)
        if result is None:
            self.level -= 1
            self.capture.pop()
        return result

    def end_capture(self, s: int, p: int) -> Optional[int]:
        index = self._capture_to_close()
        self.capture[index][1] = s - self.capture[index][0]
        result = self.match(s, p)
        if result is None:
            self.capture[index][1] = CAP_UNFINISHED
        return result

    def _capture_to_close(self) -> int:
        for index in range(self.level - 1, -1, -1):
            if self.capture[index][1] == CAP_UNFINISHED:
                return index
        raise PatternError("invalid pattern capture")

    def match_balance(self, s: int, p: int) -> Optional[int]:
        pat = self.pattern
        if p + 1 >= len(pat):
            raise PatternError("malformed pattern (missing arguments to '%b')")
        src = self.src
        if s >= len(src) or src[s] != pat[p]:
            return None
        opening, closing = pat[p], pat[p + 1]
        depth = 1
        i = s + 1
        while i < len(src):
            ch = src[i]
            if ch == closing:
                depth -= 1
                if depth == 0:
                    return i + 1
            elif ch == opening:
                depth += 1
            i += 1
        return None

    def match_capture(self, s: int, digit: str) -> Optional[int]:
        index = self._check_capture(digit)
        start, length = self.capture[index]
        text = self.src[start : start + length]
        if self.src.startswith(text, s):
            return s + len(text)
        return None

    def _check_capture(self, digit: str) -> int:
        index = int(digit) - 1
        if index < 0 or index >= self.level or self.capture[index][1] == CAP_UNFINISHED:
            raise PatternError(f"invalid capture index %{index + 1} in pattern")
        return index

    # ------------------------------------------------------------------ captures
    def get_capture(self, index: int, s: Optional[int], e: Optional[int]) -> Any:
        if index >= self.level:
            if index != 0:
                raise PatternError(f"invalid capture index %{index + 1} in replacement string")
            return self.src[s:e]
        start, length = self.capture[index]
        if length == CAP_UNFINISHED:
            raise PatternError("unfinished capture")
        if length == CAP_POSITION:
            return start + 1
        return self.src[start : start + length]

    def get_captures(self, s: Optional[int], e: Optional[int], whole_if_none: bool = True) -> List[Any]:
        count = 1 if (self.level == 0 and whole_if_none and s is not None) else self.level
        return [self.get_capture(i, s, e) for i in range(count)]


def has_specials(pattern: str) -> bool:
    return any(ch in SPECIALS for ch in pattern)


def find(src: str, pattern: str, init: int, plain: bool, want_captures: bool) -> Optional[List[Any]]:
    """Shared core of ``string.find`` and ``string.match``.

    ``init`` is a zero-based start offset already clamped to the subject.
    ``string.find`` results start with the one-based span; ``string.match``
    results are just the captures.
    """
    if not want_captures and (plain or not has_specials(pattern)):
        index = src.find(pattern, init)
        if index < 0:
            return None
        return [index + 1, index + len(pattern)]
    state = MatchState(src, pattern)
    anchor = pattern.startswith("^")
    p = 1 if anchor else 0
    s = init
    while True:
        state.reset()
        end = state.match(s, p)
        if end is not None:
            if want_captures:
                return state.get_captures(s, end)
            return [s + 1, end, *state.get_captures(None, None, whole_if_none=False)]
        s += 1
        if anchor or s > len(src):
            return None


def iterate(src: str, pattern: str):
    """Yield the capture list of each successive match, as ``string.gmatch`` does."""
    state = MatchState(src, pattern)
    position = 0
    last_match: Optional[int] = None
    while position <= len(src):
        state.reset()
        end = state.match(position, 0)
        if end is not None and end != last_match:
            captures = state.get_captures(position, end)
            position = last_match = end
            yield captures
        else:
            position += 1


def substitute(src: str, pattern: str, max_count: Optional[int], replace) -> tuple:
    """Core of ``string.gsub``; ``replace(state, start, end)`` returns replacement text or None."""
    state = MatchState(src, pattern)
    anchor = pattern.startswith("^")
    p = 1 if anchor else 0
    pieces: List[str] = []
    position = 0
    last_match: Optional[int] = None
    count = 0
    while max_count is None or count < max_count:
        state.reset()
        end = state.match(position, p)
        if end is not None and end != last_match:
            count += 1
            replacement = replace(state, position, end)
            pieces.append(src[position:end] if replacement is None else replacement)
            position = last_match = end
        elif position < len(src):
            pieces.append(src[position])
            position += 1
        else:
            break
        if anchor:
            break
    pieces.append(src[position:])
    return "".join(pieces), count


def expand_replacement(state: MatchState, template: str, start: int, end: int, tostring) -> str:
    """Expand ``%0``-``%9`` and ``%%`` in a gsub replacement string."""
    out: List[str] = []
    i = 0
    while i < len(template):
        ch = template[i]
        if ch != L_ESC:
            out.append(ch)
            i += 1
            continue
        i += 1
        nxt = template[i] if i < len(template) else ""
        if nxt == L_ESC:
            out.append(L_ESC)
        elif "0" <= nxt <= "9":
            if nxt == "0":
                out.append(state.src[start:end])
            else:
                out.append(tostring(state.get_capture(int(nxt) - 1, start, end)))
        else:
            raise PatternError("invalid use of '%' in replacement string")
        i += 1
    return "".join(out)


__all__ = [
    "MatchState",
    "PatternError",
    "expand_replacement",
    "find",
    "has_specials",
    "iterate",
    "substitute",
]
