"""Coroutines for :class:`~lua_vm.vm.BytecodeVM`.

Lua calls recurse in Python, so a coroutine body cannot be paused inside the
interpreter loop. Each coroutine instead runs its body on a parked thread and
``resume``/``yield`` hand control back and forth through a pair of one-slot
queues, so exactly one side runs at a time. While a coroutine runs, the VM's
``frames`` list is the coroutine's own call stack.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from .errors import LuaRuntimeError
from .values import HostClosure, LuaThread

logger = logging.getLogger(__name__)


class CoroutineKilled(BaseException):
    """Unwinds the thread of a suspended coroutine that is being closed."""


@dataclass
class ResumeResult:
    success: bool
    values: List[Any]
    error: Optional[LuaRuntimeError] = None


# Sent in place of resume arguments to stop a suspended body.
_KILL = object()

_Message = Tuple[str, List[Any], Optional[LuaRuntimeError]]


class LuaCoroutine(LuaThread):
    __slots__ = (
        "function",
        "vm",
        "status",
        "frames",
        "is_main",
        "error",
        "_thread",
        "_inbox",
        "_outbox",
        "__weakref__",
    )

    def __init__(self, function: Any, vm: Any, is_main: bool = False) -> None:  # noqa: ANN401 - VM is dynamic
        self.function = function
        self.vm = vm
        self.is_main = is_main
        self.status = "running" if is_main else "suspended"
        self.frames: List[Any] = []
        self.error: Optional[LuaRuntimeError] = None
        self._thread: Optional[threading.Thread] = None
        self._inbox: "queue.Queue[Any]" = queue.Queue(maxsize=1)
        self._outbox: "queue.Queue[_Message]" = queue.Queue(maxsize=1)
        if not is_main:
            vm.coroutines.add(self)

    @classmethod
    def main(cls, vm: Any) -> "LuaCoroutine":  # noqa: ANN401
        """The object standing for the code that runs outside every coroutine."""
        if vm.main_coroutine is None:
            vm.main_coroutine = cls(None, vm, is_main=True)
        return vm.main_coroutine

    # ------------------------------------------------------------------ resumer side
    def resume(self, args: Sequence[Any]) -> ResumeResult:
        if self.status == "dead":
            return ResumeResult(False, ["cannot resume dead coroutine"])
        if self.status != "suspended":
            return ResumeResult(False, ["cannot resume non-suspended coroutine"])
        kind, values, error = self._switch(list(args))
        if kind == "yield":
            self.status = "suspended"
            return ResumeResult(True, values)
        self.status = "dead"
        self._thread = None
        if kind == "error":
            self.error = error
            return ResumeResult(False, values, error)
        return ResumeResult(True, values)

    def kill(self) -> None:
        """Unwind a suspended body and mark the coroutine dead."""
        if self.is_main:
            return
        if self.status == "suspended" and self._thread is not None:
            thread = self._thread
            self._switch(_KILL)
            thread.join()
            self._thread = None
            logger.debug("closed suspended coroutine 0x%08x", id(self))
        self.status = "dead"

    def _switch(self, message: Any) -> _Message:  # noqa: ANN401
        vm = self.vm
        previous = vm.current_coroutine
        caller = previous if previous is not None else vm.main_coroutine
        saved_frames = vm.frames
        if caller is not None:
            caller.status = "normal"
        self.status = "running"
        vm.current_coroutine = self
        vm.frames = self.frames
        try:
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run, args=(message,), name=f"lua-coroutine-{id(self):x}", daemon=True
                )
                self._thread.start()
            else:
                self._inbox.put(message)
            return self._outbox.get()
        finally:
            self.frames = vm.frames
            vm.frames = saved_frames
            vm.current_coroutine = previous
            if caller is not None:
                caller.status = "running"

    # ------------------------------------------------------------------ body side
    def _run(self, args: List[Any]) -> None:
        try:
            values = self.vm.call(self.function, args)
        except CoroutineKilled:
            self._outbox.put(("dead", [], None))
        except LuaRuntimeError as exc:
            self._outbox.put(("error", [exc.value], exc))
        except Exception as exc:  # noqa: BLE001 - handed to the resumer as a Lua error
            error = LuaRuntimeError(str(exc) or exc.__class__.__name__)
            self._outbox.put(("error", [error.value], error))
        else:
            self._outbox.put(("return", values, None))

    def suspend(self, values: Sequence[Any]) -> List[Any]:
        """Hand ``values`` to the resumer and block until resumed; return the new arguments."""
        if any(isinstance(getattr(frame, "function", None), HostClosure) for frame in self.frames):
            raise RuntimeError("attempt to yield across a C-call boundary")
        self._outbox.put(("yield", list(values), None))
        message = self._inbox.get()
        if message is _KILL:
            raise CoroutineKilled()
        return message

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<LuaCoroutine status={self.status}>"


__all__ = ["CoroutineKilled", "LuaCoroutine", "ResumeResult"]
