from __future__ import annotations

import secrets
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING

from ..core.models import Answer, AnswerVersion

if TYPE_CHECKING:
    from .base import Storage

__all__ = ["VersionStore"]


def _answer_id() -> str:
    return f"ans_{secrets.token_hex(8)}"


class VersionStore:
    """Append-only answer versions with a denormalized current pointer.

    Versions are never updated or deleted: an edit appends ``max + 1`` and moves
    ``Answer.current_version`` in the same transaction.  The only field that may
    change after insert is the display-only ``polished_content``.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._answers: dict[str, Answer] = {}
        self._versions: dict[str, list[AnswerVersion]] = {}
        self._by_session: dict[str, dict[str, str]] = {}

    # ------------------------------------------------------------------ writes
    def create_version(
        self,
        session_id: str,
        question_key: str,
        content: str,
        *,
        created_at: datetime,
        editor: str | None = None,
        reason: str | None = None,
        is_original: bool | None = None,
    ) -> AnswerVersion:
        return self._storage.commit(
            lambda: self._insert(session_id, question_key, content, created_at, editor, reason, is_original)
        )

    def create_original(
        self,
        session_id: str,
        question_key: str,
        content: str,
        *,
        created_at: datetime,
    ) -> tuple[AnswerVersion, bool]:
        """Create version 1 unless the question already has an answer.

        Returns the original version and whether it was created by this call.
        """

        def _work() -> tuple[AnswerVersion, bool]:
            existing = self._by_session.get(session_id, {}).get(question_key)
            if existing is not None:
                return self._versions[existing][0], False
            return self._insert(session_id, question_key, content, created_at, None, None, True), True

        return self._storage.commit(_work)

    def set_polished(self, answer_id: str, version: int, polished: str) -> bool:
        """Attach a polished rendering to ``version`` if it is still current."""

        def _work() -> bool:
            answer = self._answers.get(answer_id)
            if answer is None or answer.current_version != version:
                return False
            rows = self._versions[answer_id]
            previous = rows[version - 1]
            rows[version - 1] = replace(previous, polished_content=polished)

            def _undo() -> None:
                rows[version - 1] = previous

            self._storage.journal(_undo)
            return True

        return self._storage.commit(_work)

    def _insert(
        self,
        session_id: str,
        question_key: str,
        content: str,
        created_at: datetime,
        editor: str | None,
        reason: str | None,
        is_original: bool | None,
    ) -> AnswerVersion:
        keyed = self._by_session.setdefault(session_id, {})
        answer_id = keyed.get(question_key)
        previous_answer = self._answers.get(answer_id) if answer_id else None
        number = previous_answer.current_version + 1 if previous_answer else 1
        original = number == 1
        if is_original is not None and is_original != original:
            raise ValueError(f"version {number} of '{question_key}' cannot have is_original={is_original}")

        if answer_id is None:
            answer_id = _answer_id()
            while answer_id in self._answers:
                answer_id = _answer_id()
            keyed[question_key] = answer_id
            self._versions[answer_id] = []

        row = AnswerVersion(
            answer_id=answer_id,
            version=number,
            content=content,
            is_original=original,
            created_at=created_at,
            edited_at=None if original else created_at,
            edited_by=None if original else editor,
            edit_notes=None if original else reason,
        )
        rows = self._versions[answer_id]
        rows.append(row)
        self._answers[answer_id] = Answer(
            answer_id=answer_id,
            session_id=session_id,
            question_key=question_key,
            current_version=number,
            created_at=previous_answer.created_at if previous_answer else created_at,
        )

        def _undo() -> None:
            rows.pop()
            if previous_answer is None:
                del self._answers[answer_id]
                del self._versions[answer_id]
                del keyed[question_key]
            else:
                self._answers[answer_id] = previous_answer

        self._storage.journal(_undo)
        return row

    # ------------------------------------------------------------------- reads
    def get_answer(self, answer_id: str) -> Answer | None:
        with self._storage.lock:
            return self._answers.get(answer_id)

    def answer_for(self, session_id: str, question_key: str) -> Answer | None:
        with self._storage.lock:
            answer_id = self._by_session.get(session_id, {}).get(question_key)
            return self._answers.get(answer_id) if answer_id else None

    def answers_for_session(self, session_id: str) -> dict[str, Answer]:
        with self._storage.lock:
            keyed = self._by_session.get(session_id, {})
            return {key: self._answers[answer_id] for key, answer_id in keyed.items()}

    def current(self, answer_id: str) -> AnswerVersion | None:
        with self._storage.lock:
            answer = self._answers.get(answer_id)
            if answer is None:
                return None
            return self._versions[answer_id][answer.current_version - 1]

    def list_versions(self, answer_id: str) -> list[AnswerVersion]:
        with self._storage.lock:
            return list(self._versions.get(answer_id, ()))
