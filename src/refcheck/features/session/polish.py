"""Best-effort polishing of accepted answers.

The polisher is an opaque external text transform.  It runs in the background
after an answer is durably stored; the session never waits for it.  A result
only fills the display field of the version it was computed for, and is
dropped if that version is no longer current or the session has been sealed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, wait

from ...core import feature_flags
from ...core.errors import TransientStorageError
from ...core.models import AnswerVersion, Question, SessionState
from ...storage.base import Storage
from .concurrency import submit_background

__all__ = ["PolishDispatcher", "Polisher"]

logger = logging.getLogger(__name__)

Polisher = Callable[[str, Question], str]


class PolishDispatcher:
    def __init__(self, storage: Storage, polisher: Polisher | None = None) -> None:
        self._storage = storage
        self._polisher = polisher
        self._pending: set[Future[None]] = set()
        self._guard = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._polisher is not None and not feature_flags.is_enabled(feature_flags.POLISH_DISABLED)

    def schedule(self, session_id: str, question: Question, version: AnswerVersion) -> bool:
        if not self.enabled:
            return False
        future = submit_background(self._run, session_id, question, version)
        with self._guard:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return True

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight polish jobs; True when none remain."""

        with self._guard:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def _forget(self, future: Future[None]) -> None:
        with self._guard:
            self._pending.discard(future)

    def _run(self, session_id: str, question: Question, version: AnswerVersion) -> None:
        polisher = self._polisher
        if polisher is None:
            return
        try:
            polished = polisher(version.content, question)
        except Exception:
            logger.warning(
                "polish failed; keeping raw answer",
                exc_info=True,
                extra={"session_id": session_id, "answer_id": version.answer_id},
            )
            return
        if not isinstance(polished, str) or not polished.strip():
            logger.debug("polisher returned nothing usable", extra={"answer_id": version.answer_id})
            return

        def _apply() -> bool:
            session = self._storage.sessions.get(session_id)
            if session is None or session.state is SessionState.COMPLETED:
                return False
            return self._storage.versions.set_polished(version.answer_id, version.version, polished.strip())

        try:
            applied = self._storage.commit(_apply)
        except TransientStorageError:
            logger.warning(
                "could not store polished answer", exc_info=True, extra={"answer_id": version.answer_id}
            )
            return
        logger.debug(
            "polish %s",
            "applied" if applied else "discarded",
            extra={"session_id": session_id, "answer_id": version.answer_id, "version": version.version},
        )
