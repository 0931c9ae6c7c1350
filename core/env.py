"""Environment variable helpers."""

from __future__ import annotations

import os
from typing import Callable, Optional, Tuple, TypeVar

from core.logging import get_logger

T = TypeVar("T", int, float)

logger = get_logger(__name__)

_TRUTHY = frozenset({"1", "true", "yes", "y", "on"})
_FALSY = frozenset({"0", "false", "no", "n", "off"})


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    """Stripped value of ``key``; blank counts as unset."""
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_number(key: str, default: T, parse: Callable[[str], T], minimum: Optional[T]) -> T:
    raw = env_str(key)
    if raw is None:
        return default
    try:
        value = parse(raw)
    except ValueError:
        value = None
    if value is None or (minimum is not None and value < minimum):
        logger.warning("Ignoring %s=%r (minimum %s); using %s.", key, raw, minimum, default)
        return default
    return value


def env_int(key: str, default: int, *, minimum: Optional[int] = None) -> int:
    return _env_number(key, default, int, minimum)


def env_float(key: str, default: float, *, minimum: Optional[float] = None) -> float:
    return _env_number(key, default, float, minimum)


def env_bool(key: str, default: bool) -> bool:
    raw = env_str(key)
    if raw is None:
        return default
    normalized = raw.lower()
    if normalized in _TRUTHY:
        return True
    if normalized in _FALSY:
        return False
    logger.warning("Invalid boolean env %s='%s'. Using default=%s.", key, raw, default)
    return default


def env_csv(key: str, default: Tuple[str, ...] = ()) -> Tuple[str, ...]:
    """Split a comma separated variable into a tuple of non-empty items."""
    raw = os.getenv(key)
    if raw is None:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


__all__ = ["env_bool", "env_csv", "env_float", "env_int", "env_str"]
