from __future__ import annotations

from typing import Any, Sequence

from ..coroutines import LuaCoroutine
from ..errors import LuaRuntimeError
from ..values import BuiltinFunction, LuaMultiReturn, is_callable_value
from .helpers import arg, register_library, type_error


def _check_function(args: Sequence[Any], fname: str, vm: Any) -> Any:  # noqa: ANN401
    func = arg(args, 1)
    if not is_callable_value(func):
        raise type_error(args, 1, fname, "function", vm)
    return func


def _check_coroutine(args: Sequence[Any], fname: str, vm: Any) -> LuaCoroutine:  # noqa: ANN401
    value = arg(args, 1)
    if isinstance(value, LuaCoroutine):
        return value
    raise type_error(args, 1, fname, "coroutine", vm)


def _co_create(args: Sequence[Any], vm: Any) -> LuaCoroutine:  # noqa: ANN401
    return LuaCoroutine(_check_function(args, "create", vm), vm)


def _co_resume(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    coroutine = _check_coroutine(args, "resume", vm)
    result = coroutine.resume(args[1:])
    return LuaMultiReturn([result.success, *result.values])


def _co_yield(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    current = vm.current_coroutine
    if current is None:
        raise RuntimeError("attempt to yield from outside a coroutine")
    return LuaMultiReturn(current.suspend(args))


def _co_status(args: Sequence[Any], vm: Any) -> str:  # noqa: ANN401
    return _check_coroutine(args, "status", vm).status


def _co_running(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    current = vm.current_coroutine
    if current is not None:
        return LuaMultiReturn([current, False])
    return LuaMultiReturn([LuaCoroutine.main(vm), True])


def _co_isyieldable(args: Sequence[Any], vm: Any) -> bool:  # noqa: ANN401
    return vm.current_coroutine is not None


def _co_close(args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
    coroutine = _check_coroutine(args, "close", vm)
    if coroutine.status in ("running", "normal"):
        raise RuntimeError(f"cannot close a {coroutine.status} coroutine")
    coroutine.kill()
    if coroutine.error is not None:
        return LuaMultiReturn([False, coroutine.error.value])
    return LuaMultiReturn([True])


def _co_wrap(args: Sequence[Any], vm: Any) -> BuiltinFunction:  # noqa: ANN401
    coroutine = LuaCoroutine(_check_function(args, "wrap", vm), vm)

    def resume_wrapped(call_args: Sequence[Any], vm: Any) -> LuaMultiReturn:  # noqa: ANN401
        result = coroutine.resume(call_args)
        if result.success:
            return LuaMultiReturn(result.values)
        if result.error is not None:
            raise LuaRuntimeError(result.error.value, result.error.frames)
        # Dead or running: reported at the caller's position.
        raise RuntimeError(result.values[0])

    return BuiltinFunction("wrap", resume_wrapped)


def open_coroutine(vm: Any) -> None:  # noqa: ANN401
    register_library(
        vm,
        "coroutine",
        {
            "create": BuiltinFunction("coroutine.create", _co_create),
            "resume": BuiltinFunction("coroutine.resume", _co_resume),
            "yield": BuiltinFunction("coroutine.yield", _co_yield),
            "status": BuiltinFunction("coroutine.status", _co_status),
            "running": BuiltinFunction("coroutine.running", _co_running),
            "isyieldable": BuiltinFunction("coroutine.isyieldable", _co_isyieldable),
            "close": BuiltinFunction("coroutine.close", _co_close),
            "wrap": BuiltinFunction("coroutine.wrap", _co_wrap),
        },
    )


__all__ = ["open_coroutine"]
