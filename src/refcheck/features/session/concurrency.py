from __future__ import annotations

import asyncio
import os
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from functools import partial
from typing import Any

from ...core.errors import ConcurrentModification

__all__ = ["SessionLocks", "run_blocking", "submit_background"]

_MAX_WORKERS = max(1, min(32, os.cpu_count() or 1))
_EXECUTOR = ThreadPoolExecutor(max_workers=_MAX_WORKERS, thread_name_prefix="refcheck-session")


async def run_blocking(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    loop = asyncio.get_running_loop()
    bound = partial(func, *args, **kwargs)
    return await loop.run_in_executor(_EXECUTOR, bound)


def submit_background(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
    return _EXECUTOR.submit(func, *args, **kwargs)


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # Holders plus waiters; the entry is dropped when this reaches zero.
        self.users = 0


class SessionLocks:
    """One serialization domain per session id.

    Mutations of the same session queue on its lock; different sessions never
    contend.  Waiting longer than ``timeout`` seconds raises
    :class:`ConcurrentModification` so callers can back off and retry.  Entries
    only live while someone holds or waits on them.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self._locks: dict[str, _LockEntry] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, session_id: str) -> _LockEntry:
        with self._guard:
            entry = self._locks.get(session_id)
            if entry is None:
                entry = _LockEntry()
                self._locks[session_id] = entry
            entry.users += 1
            return entry

    def _checkin(self, session_id: str, entry: _LockEntry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[session_id]

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        entry = self._checkout(session_id)
        try:
            if not entry.lock.acquire(timeout=self.timeout):
                raise ConcurrentModification(f"session '{session_id}' is busy; retry shortly")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(session_id, entry)
