import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lua_vm import LuaRuntimeError, run_source
from lua_vm.stdlib import patterns


def test_find_returns_positions_and_captures():
    assert run_source('return string.find("hello world", "o w")') == [5, 7]
    assert run_source('return string.find("key=val", "(%w+)=(%w+)")') == [1, 7, "key", "val"]
    assert run_source('return string.find("a.b", ".", 1, true)') == [1, 1]
    assert run_source('return string.find("a.b", "%.")') == [2, 2]
    assert run_source('return string.find("abc", "x")') == [None]


def test_find_with_negative_init_and_empty_pattern():
    assert run_source('return string.find("abcabc", "b", -3)') == [5, 5]
    assert run_source('return string.find("abc", "", 10)') == [None]
    assert run_source('return string.find("abc", "", 4)') == [4, 3]


def test_match_classes_and_anchors():
    src = """
    return string.match("  trim me  ", "^%s*(.-)%s*$"),
        string.match("2024-05-06", "(%d+)-(%d+)-(%d+)")
    """
    assert run_source(src) == ["trim me", "2024", "05", "06"]


def test_match_sets_and_negated_sets():
    assert run_source('return ("abc123"):match("[%a]+"), ("abc123"):match("[^%a]+")') == ["abc", "123"]
    assert run_source('return ("x-y"):match("[a-z%-]+")') == ["x-y"]


def test_position_capture_and_back_reference():
    assert run_source('return string.match("hello", "()ll()")') == [3, 5]
    assert run_source("return string.match(\"say 'hi' now\", \"(['])(.-)%1\")") == ["'", "hi"]


def test_balanced_and_frontier_patterns():
    assert run_source('return string.match("f(a(b)c) d", "%b()")') == ["(a(b)c)"]
    assert run_source('return string.gsub("THE (quick) fox", "%f[%a]%a+", "W")') == ["W (W) W", 3]


def test_lazy_and_optional_quantifiers():
    assert run_source('return string.match("<a><b>", "<(.-)>")') == ["a"]
    assert run_source('return string.match("<a><b>", "<(.*)>")') == ["a><b"]
    assert run_source('return string.match("color colour", "colou?r", 2)') == ["colour"]


def test_gmatch_iterates_all_matches():
    src = """
    local words = {}
    for word in string.gmatch("one two  three", "%a+") do
        words[#words + 1] = word
    end
    local pairs_seen = {}
    for k, v in string.gmatch("a=1, b=2", "(%w+)=(%w+)") do
        pairs_seen[#pairs_seen + 1] = k .. v
    end
    return table.concat(words, "|"), table.concat(pairs_seen, "|")
    """
    assert run_source(src) == ["one|two|three", "a1|b2"]


def test_gsub_with_string_table_and_function():
    src = """
    local a = string.gsub("hello world", "(%w+)", "<%1>")
    local b = string.gsub("$name is $age", "%$(%w+)", {name = "Ann", age = 3})
    local c = string.gsub("1 2 3", "%d", function(d) return d * 2 end)
    local d, n = string.gsub("aaa", "a", "b", 2)
    local e = string.gsub("keep", "%w+", function() return nil end)
    return a, b, c, d, n, e
    """
    assert run_source(src) == ["<hello> <world>", "Ann is 3", "2 4 6", "bba", 2, "keep"]


def test_gsub_empty_matches_and_whole_match():
    assert run_source('return string.gsub("abc", "", "-")') == ["-a-b-c-", 4]
    assert run_source('return string.gsub("abc", "%w", "%0%0")') == ["aabbcc", 3]


def test_gsub_invalid_replacement_escape():
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source('return string.gsub("abc", "b", "%2")')
    assert "invalid capture index %2 in replacement string" in str(excinfo.value)


def test_malformed_patterns_raise_errors():
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source('return string.find("abc", "[a")')
    assert "malformed pattern (missing ']')" in str(excinfo.value)
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source('return string.find("abc", "%")')
    assert "malformed pattern (ends with '%')" in str(excinfo.value)


def test_format_conversions():
    src = """
    return string.format("%5.2f|%d|%x|%X|%s|%q", 3.14159, 42, 255, 255, {} ~= nil, "a\\nb"),
        string.format("%-5s|%05d|%%", "ab", 7),
        string.format("%g %g", 1e20, 0.5)
    """
    assert run_source(src) == [' 3.14|42|ff|FF|true|"a\\\nb"', "ab   |00007|%", "1e+20 0.5"]


def test_format_rejects_non_integer_float():
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source('return string.format("%d", 1.5)')
    assert "bad argument #2 to 'format' (number has no integer representation)" in str(excinfo.value)


def test_byte_char_rep_sub():
    src = """
    return string.char(104, 105), string.rep("ab", 3, ","),
        string.sub("hello", 2, -2), string.sub("hello", -3), ("x"):rep(0), string.byte("ABC", 1, -1)
    """
    assert run_source(src) == ["hi", "ab,ab,ab", "ell", "llo", "", 65, 66, 67]


def test_matcher_module_directly():
    assert patterns.find("abc", "b", 0, False, want_captures=False) == [2, 2]
    assert list(patterns.iterate("a1b2", "%d")) == [["1"], ["2"]]
    assert patterns.has_specials("a.b")
    assert not patterns.has_specials("abc")
