"""Environment variable parsing helpers."""

from __future__ import annotations

import os
from typing import overload

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def _read_env(name: str) -> str | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


@overload
def get_int_env(name: str, default: int) -> int: ...


@overload
def get_int_env(name: str, default: None = None) -> int | None: ...


def get_int_env(name: str, default: int | None = None) -> int | None:
    raw = _read_env(name)
    if raw is None:
        return default

    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from exc


@overload
def get_float_env(name: str, default: float) -> float: ...


@overload
def get_float_env(name: str, default: None = None) -> float | None: ...


def get_float_env(name: str, default: float | None = None) -> float | None:
    raw = _read_env(name)
    if raw is None:
        return default

    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got '{raw}'") from exc


@overload
def get_bool_env(name: str, default: bool) -> bool: ...


@overload
def get_bool_env(name: str, default: None = None) -> bool | None: ...


def get_bool_env(name: str, default: bool | None = None) -> bool | None:
    raw = _read_env(name)
    if raw is None:
        return default

    value = raw.lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ValueError(
        f"{name} must be one of {sorted(TRUE_VALUES | FALSE_VALUES)}, got '{raw}'"
    )


@overload
def get_str_env(name: str, default: str) -> str: ...


@overload
def get_str_env(name: str, default: None = None) -> str | None: ...


def get_str_env(name: str, default: str | None = None) -> str | None:
    raw = _read_env(name)
    if raw is None:
        return default
    return raw
