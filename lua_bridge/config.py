"""Process-wide bridge settings.

The only setting is the pointer-safety policy. It is read from the
``LUA_BRIDGE_POINTER_SAFETY`` environment variable the first time it is
needed and can be replaced with :func:`configure`. Type descriptors capture
the policy when they are registered.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from typing import Mapping

logger = logging.getLogger(__name__)

POINTER_SAFETY_ENV = "LUA_BRIDGE_POINTER_SAFETY"
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"", "0", "false", "no", "off"}


@dataclasses.dataclass(frozen=True)
class BridgeConfig:
    pointer_safety: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BridgeConfig":
        environ = os.environ if environ is None else environ
        raw = environ.get(POINTER_SAFETY_ENV, "").strip().lower()
        if raw in _TRUE_VALUES:
            return cls(pointer_safety=True)
        if raw not in _FALSE_VALUES:
            logger.warning("ignoring unrecognised %s=%r", POINTER_SAFETY_ENV, raw)
        return cls()


_config: BridgeConfig | None = None


def get_config() -> BridgeConfig:
    global _config
    if _config is None:
        _config = BridgeConfig.from_env()
    return _config


def configure(**changes) -> BridgeConfig:
    """Replace the active configuration with a copy carrying ``changes``."""
    global _config
    _config = dataclasses.replace(get_config(), **changes)
    logger.debug("bridge configuration set to %s", _config)
    return _config


def reset_config() -> None:
    """Forget the active configuration so the next read comes from the environment again."""
    global _config
    _config = None


__all__ = ["BridgeConfig", "POINTER_SAFETY_ENV", "configure", "get_config", "reset_config"]
