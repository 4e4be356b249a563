"""Standard libraries for :class:`~lua_vm.vm.BytecodeVM`.

Each ``open_*`` function installs one library into a VM's global table and
records it in ``package.loaded``.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from .base import open_base
from .corolib import open_coroutine
from .debuglib import open_debug
from .iolib import open_io
from .mathlib import open_math
from .oslib import open_os
from .packagelib import open_package
from .stringlib import open_string
from .tablelib import open_table
from .utf8lib import open_utf8

LIBRARIES: Dict[str, Callable[[Any], Any]] = {
    "base": open_base,
    "package": open_package,
    "coroutine": open_coroutine,
    "table": open_table,
    "io": open_io,
    "os": open_os,
    "string": open_string,
    "math": open_math,
    "utf8": open_utf8,
    "debug": open_debug,
}


def install_stdlib(vm: Any, output: Optional[Any] = None) -> None:  # noqa: ANN401
    """Open every available library on ``vm``.

    ``output`` sets where ``print`` and ``io.write`` go: a list collects
    lines, a stream is written to, and None leaves the VM's current target.
    """
    if output is not None:
        vm.output = output
    for opener in LIBRARIES.values():
        opener(vm)


__all__ = [
    "LIBRARIES",
    "install_stdlib",
    "open_base",
    "open_coroutine",
    "open_debug",
    "open_io",
    "open_math",
    "open_os",
    "open_package",
    "open_string",
    "open_table",
    "open_utf8",
]
