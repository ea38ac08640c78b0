"""Transaction boundary shared by the session, version and turn stores.

Every write runs inside :meth:`Storage.commit`: the storage lock is held for
the duration, each store journals how to undo its change, and any exception
rolls the journal back so no partial write is ever visible.  Failures a
backend flags as :class:`TransientStorageError` are retried with exponential
backoff before they are surfaced to the caller.

Reads take the same lock briefly and return frozen records, so a reader sees
either all or none of a concurrent commit.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TypeVar

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.errors import TransientStorageError
from .sessions import SessionStore
from .turns import TurnLog
from .versions import VersionStore

__all__ = ["Storage"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Storage:
    """In-memory, append-only persistence for reference sessions."""

    def __init__(self, *, retries: int = 3, retry_wait: float = 0.05) -> None:
        self._lock = threading.RLock()
        self._journal: list[Callable[[], None]] | None = None
        self._retrying = Retrying(
            retry=retry_if_exception_type(TransientStorageError),
            stop=stop_after_attempt(max(1, retries)),
            wait=wait_exponential(multiplier=retry_wait, max=2.0),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        self.sessions = SessionStore(self)
        self.versions = VersionStore(self)
        self.turns = TurnLog(self)

    def commit(self, work: Callable[[], T]) -> T:
        """Run ``work`` atomically, retrying transient persistence failures.

        Nested calls join the enclosing transaction.
        """

        with self._lock:
            if self._journal is not None:
                return work()
        return self._retrying.copy()(self._run_once, work)

    def read(self, view: Callable[[], T]) -> T:
        """Evaluate ``view`` against a consistent snapshot of all stores."""

        with self._lock:
            return view()

    def journal(self, undo: Callable[[], None]) -> None:
        if self._journal is None:
            raise RuntimeError("storage writes must run inside Storage.commit")
        self._journal.append(undo)

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def _run_once(self, work: Callable[[], T]) -> T:
        with self._lock:
            self._journal = []
            try:
                result = work()
                self._persist()
            except BaseException:
                undo_steps = self._journal
                self._journal = None
                for undo in reversed(undo_steps):
                    undo()
                raise
            self._journal = None
            return result

    def _persist(self) -> None:
        """Durability boundary; the in-memory backend has nothing to flush."""
