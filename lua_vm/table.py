from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple


class _BoolKey:
    """Dictionary stand-in for boolean keys so ``true`` never collides with ``1``."""

    __slots__ = ("value",)

    def __init__(self, value: bool) -> None:
        self.value = value

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return "true" if self.value else "false"


_TRUE_KEY = _BoolKey(True)
_FALSE_KEY = _BoolKey(False)


def _normalize_key(key: Any) -> Any:
    if key is True:
        return _TRUE_KEY
    if key is False:
        return _FALSE_KEY
    if isinstance(key, float) and key.is_integer():
        return int(key)
    return key


def _denormalize_key(key: Any) -> Any:
    if isinstance(key, _BoolKey):
        return key.value
    return key


class LuaTable:
    """Hybrid table supporting Lua-style array and dictionary access."""

    __slots__ = ("array", "map", "metatable", "_keys", "_positions", "_dead", "__weakref__")

    def __init__(self, array: Iterable[Any] | None = None, mapping: Dict[Any, Any] | None = None) -> None:
        self.array: List[Any] = list(array) if array is not None else []
        # insertion ordered; a None value marks a cleared key so traversal can continue past it
        self.map: Dict[Any, Any] = {}
        self._keys: List[Any] = []
        self._positions: Dict[Any, int] = {}
        self._dead = 0
        self.metatable: Optional[LuaTable] = None
        self._trim_array()
        if mapping:
            for key, value in mapping.items():
                self.raw_set(key, value)

    # ---------------------------- array helpers ---------------------------- #
    def append(self, value: Any) -> None:
        self.raw_set(self.lua_len() + 1, value)

    def extend(self, values: Iterable[Any]) -> None:
        for value in values:
            self.append(value)

    def insert(self, index: int, value: Any) -> None:
        if index < 1:
            index = 1
        if index > len(self.array) + 1:
            index = len(self.array) + 1
        self.array.insert(index - 1, value)
        self._migrate_from_map()

    def remove(self, index: int | None = None) -> Any:
        if not self.array:
            return None
        if index is None:
            index = len(self.array)
        if index < 1 or index > len(self.array):
            return None
        value = self.array.pop(index - 1)
        self._trim_array()
        return value

    def lua_len(self) -> int:
        count = len(self.array)
        while count > 0 and self.array[count - 1] is None:
            count -= 1
        return count

    # --------------------------- raw table access -------------------------- #
    def raw_get(self, key: Any) -> Any:
        key = _normalize_key(key)
        if self._is_array_key(key):
            if 1 <= key <= len(self.array):
                return self.array[key - 1]
        return self.map.get(key, None)

    def raw_set(self, key: Any, value: Any) -> None:
        if key is None:
            raise RuntimeError("table index is nil")
        if isinstance(key, float) and key != key:
            raise RuntimeError("table index is NaN")
        key = _normalize_key(key)
        if self._is_array_key(key):
            if 1 <= key <= len(self.array):
                self.array[key - 1] = value
                if value is None:
                    self._trim_array()
                return
            if key == len(self.array) + 1:
                if value is None:
                    self._clear_hash_key(key)
                    return
                self.array.append(value)
                self._clear_hash_key(key)
                self._migrate_from_map()
                return
        if value is None:
            self._clear_hash_key(key)
            return
        if key not in self._positions:
            self._compact()
            self._positions[key] = len(self._keys)
            self._keys.append(key)
        elif self.map.get(key) is None:
            self._dead -= 1
        self.map[key] = value

    # ---------------------------- metatable access --------------------------- #
    def get_metatable(self) -> Optional["LuaTable"]:
        return self.metatable

    def set_metatable(self, metatable: Optional["LuaTable"]) -> None:
        self.metatable = metatable

    # ---------------------------- iteration helpers --------------------------- #
    def iter_items(self) -> Iterator[Tuple[Any, Any]]:
        for idx, value in enumerate(self.array, start=1):
            if value is not None:
                yield idx, value
        for key in self._keys:
            value = self.map.get(key)
            if value is not None:
                yield _denormalize_key(key), value

    def next_item(self, key: Any) -> Optional[Tuple[Any, Any]]:
        """Return the entry following ``key`` in traversal order, or None at the end."""
        items = list(self.iter_items())
        if key is None:
            return items[0] if items else None
        key = _denormalize_key(_normalize_key(key))
        for position, (candidate, _) in enumerate(items):
            if candidate == key and type(candidate) is type(key) or (
                candidate == key and not isinstance(candidate, bool) and not isinstance(key, bool)
            ):
                if position + 1 < len(items):
                    return items[position + 1]
                return None
        raise RuntimeError("invalid key to 'next'")

    # ------------------------------- internals ----------------------------- #
    def _trim_array(self) -> None:
        while self.array and self.array[-1] is None:
            self.array.pop()

    def _migrate_from_map(self) -> None:
        next_index = len(self.array) + 1
        while self.map.get(next_index) is not None:
            self.array.append(self.map[next_index])
            self._clear_hash_key(next_index)
            next_index += 1

    def _clear_hash_key(self, key: Any) -> None:
        if self.map.get(key) is not None:
            self.map[key] = None
            self._dead += 1

    def _compact(self) -> None:
        if self._dead <= 8 or self._dead * 2 <= len(self._keys):
            return
        live = [key for key in self._keys if self.map.get(key) is not None]
        self.map = {key: self.map[key] for key in live}
        self._keys = live
        self._positions = {key: position for position, key in enumerate(live)}
        self._dead = 0

    @staticmethod
    def _is_array_key(key: Any) -> bool:
        return isinstance(key, int) and not isinstance(key, bool) and key >= 1

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"LuaTable(array={self.array!r}, map={self.map!r})"


__all__ = ["LuaTable"]
