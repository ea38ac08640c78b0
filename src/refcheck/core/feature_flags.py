"""Runtime switches for optional engine behaviour.

Flags come from the comma-separated ``REFCHECK_FEATURES`` environment
variable (names are case-insensitive) and can be forced on or off for a block
of code with :func:`override`.  Nested overrides stack; the innermost one
decides.

``polish.disabled``
    Kill switch for the asynchronous polishing of accepted answers.
``validator.strict_scale``
    Scale answers must be a bare integer (``4``); ``4/5`` and ``4 out of 5``
    are asked to be clarified.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from contextlib import contextmanager
from typing import Final

_ENV_VAR: Final = "REFCHECK_FEATURES"

POLISH_DISABLED: Final = "polish.disabled"
STRICT_SCALE: Final = "validator.strict_scale"
KNOWN_FLAGS: Final = frozenset({POLISH_DISABLED, STRICT_SCALE})

_OVERRIDE_STACK: list[tuple[frozenset[str], frozenset[str]]] = []


def _normalise(flag: str) -> str:
    return flag.strip().lower()


def _from_env() -> set[str]:
    raw = os.getenv(_ENV_VAR) or ""
    return {_normalise(entry) for entry in raw.split(",") if entry.strip()}


def active_flags() -> frozenset[str]:
    """Every flag currently on, after applying the override stack to the env list."""

    active = _from_env()
    for enable, disable in _OVERRIDE_STACK:
        active -= disable
        active |= enable
    return frozenset(active)


def is_enabled(flag: str) -> bool:
    return _normalise(flag) in active_flags()


@contextmanager
def override(*, enable: Iterable[str] | None = None, disable: Iterable[str] | None = None):
    """Force flags on or off inside the block."""

    frame = (
        frozenset(_normalise(flag) for flag in (enable or ())),
        frozenset(_normalise(flag) for flag in (disable or ())),
    )
    _OVERRIDE_STACK.append(frame)
    try:
        yield
    finally:
        _OVERRIDE_STACK.pop()
