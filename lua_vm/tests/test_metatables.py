import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lua_vm import LuaRuntimeError, run_source


def test_index_fallback_table_and_function():
    src = """
    local defaults = {color = "red"}
    local t = setmetatable({}, {__index = defaults})
    local u = setmetatable({}, {__index = function(_, key) return key .. "!" end})
    return t.color, u.name
    """
    assert run_source(src) == ["red", "name!"]


def test_newindex_redirects_assignment():
    src = """
    local log = {}
    local proxy = setmetatable({}, {__newindex = function(t, k, v) rawset(log, k, v * 2) end})
    proxy.x = 21
    return rawget(proxy, "x"), log.x
    """
    assert run_source(src) == [None, 42]


def test_arithmetic_and_concat_metamethods():
    src = """
    local Vec = {}
    Vec.__index = Vec
    Vec.__add = function(a, b) return setmetatable({x = a.x + b.x}, Vec) end
    Vec.__unm = function(a) return setmetatable({x = -a.x}, Vec) end
    Vec.__concat = function(a, b)
        local left = type(a) == "table" and a.x or a
        local right = type(b) == "table" and b.x or b
        return left .. ":" .. right
    end
    local a = setmetatable({x = 1}, Vec)
    local b = setmetatable({x = 2}, Vec)
    return (a + b).x, (-a).x, a .. "s", "p" .. b
    """
    assert run_source(src) == [3, -1, "1:s", "p:2"]


def test_comparison_metamethods():
    src = """
    local mt = {}
    mt.__eq = function(a, b) return a.v == b.v end
    mt.__lt = function(a, b) return a.v < b.v end
    mt.__le = function(a, b) return a.v <= b.v end
    local a = setmetatable({v = 1}, mt)
    local b = setmetatable({v = 1}, mt)
    local c = setmetatable({v = 2}, mt)
    return a == b, a ~= c, a < c, c <= a, c > a
    """
    assert run_source(src) == [True, True, True, False, True]


def test_call_len_and_tostring_metamethods():
    src = """
    local obj = setmetatable({}, {
        __call = function(self, a, b) return a + b end,
        __len = function() return 99 end,
        __tostring = function() return "custom object" end,
    })
    return obj(2, 3), #obj, tostring(obj)
    """
    assert run_source(src) == [5, 99, "custom object"]


def test_name_field_used_by_tostring():
    result = run_source('return tostring(setmetatable({}, {__name = "Point"}))')
    assert result[0].startswith("Point: 0x")


def test_protected_metatable():
    src = """
    local t = setmetatable({}, {__metatable = "locked"})
    local ok, err = pcall(setmetatable, t, {})
    return getmetatable(t), ok, err
    """
    assert run_source(src) == ["locked", False, "cannot change a protected metatable"]


def test_pairs_metamethod():
    src = """
    local t = setmetatable({}, {__pairs = function(self)
        local done = false
        return function()
            if done then return nil end
            done = true
            return "only", 1
        end, self, nil
    end})
    local seen = {}
    for k, v in pairs(t) do seen[#seen + 1] = k .. "=" .. v end
    return table.concat(seen, ",")
    """
    assert run_source(src) == ["only=1"]


def test_string_methods_through_string_metatable():
    assert run_source('local s = "abc" return s:upper(), ("x"):rep(3), #s:sub(2)') == ["ABC", "xxx", 2]


def test_inheritance_chain():
    src = """
    local Base = {}
    Base.__index = Base
    function Base.new(name) return setmetatable({name = name}, Base) end
    function Base:greet() return "hello " .. self.name end
    local Derived = setmetatable({}, {__index = Base})
    Derived.__index = Derived
    function Derived.new(name) return setmetatable(Base.new(name), Derived) end
    function Derived:shout() return self:greet():upper() end
    return Derived.new("lua"):shout()
    """
    assert run_source(src) == ["HELLO LUA"]


def test_index_loop_is_reported():
    src = """
    local t = {}
    setmetatable(t, {__index = t})
    return t.missing
    """
    with pytest.raises(LuaRuntimeError) as excinfo:
        run_source(src)
    assert "loop" in str(excinfo.value)
