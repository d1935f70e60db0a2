"""Environment parsing helpers; malformed values fall back to defaults. [IV]"""
from __future__ import annotations

import os
import sys
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

TRUTHY = frozenset({"1", "true", "yes", "on"})


def clean_env_value(value: Optional[str]) -> Optional[str]:
    """Strip an inline ``# comment`` and surrounding whitespace from a raw value."""
    if not value:
        return value
    return value.split("#", 1)[0].strip()


def _raw(name: str) -> Optional[str]:
    return clean_env_value(os.getenv(name)) or None


def _parse(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = _raw(name)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        sys.stderr.write(f"Warning: ignoring {name}={raw!r}, using default {default}\n")
        return default


def get_str(name: str, default: Optional[str] = None) -> Optional[str]:
    return _raw(name) or default


def get_bool(name: str, default: bool = False) -> bool:
    return _parse(name, default, lambda raw: raw.lower() in TRUTHY)


def get_int(name: str, default: int) -> int:
    return _parse(name, default, int)


def get_float(name: str, default: float) -> float:
    return _parse(name, default, float)
