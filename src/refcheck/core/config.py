from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

__all__ = ["EngineConfig"]

logger = logging.getLogger(__name__)


def _env_float(env: Mapping[str, str], name: str, default: float, *, minimum: float) -> float:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r; using %s", name, raw, default)
        return default
    return max(minimum, value)


def _env_int(env: Mapping[str, str], name: str, default: int, *, minimum: int) -> int:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %s", name, raw, default)
        return default
    return max(minimum, value)


@dataclass(frozen=True)
class EngineConfig:
    """Tunables for the session engine."""

    # Seconds a mutation waits for the per-session lock before giving up.
    lock_timeout: float = 5.0
    storage_retries: int = 3
    # Initial backoff between storage retries, doubled on each attempt.
    storage_retry_wait: float = 0.05
    max_answer_chars: int = 5000

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> EngineConfig:
        source = os.environ if env is None else env
        return cls(
            lock_timeout=_env_float(source, "REFCHECK_LOCK_TIMEOUT", cls.lock_timeout, minimum=0.0),
            storage_retries=_env_int(source, "REFCHECK_STORAGE_RETRIES", cls.storage_retries, minimum=1),
            storage_retry_wait=_env_float(
                source, "REFCHECK_STORAGE_RETRY_WAIT", cls.storage_retry_wait, minimum=0.0
            ),
            max_answer_chars=_env_int(source, "REFCHECK_MAX_ANSWER_CHARS", cls.max_answer_chars, minimum=1),
        )
