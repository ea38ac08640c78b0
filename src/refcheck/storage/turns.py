from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from ..core.models import ConversationTurn, TurnKind

if TYPE_CHECKING:
    from .base import Storage

__all__ = ["TurnLog"]


class TurnLog:
    """Append-only conversation log; reads come back in insertion order."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._turns: dict[str, list[ConversationTurn]] = {}
        self._sequence = 0

    def append_turn(
        self,
        session_id: str,
        question_key: str,
        kind: TurnKind,
        content: str,
        *,
        created_at: datetime,
    ) -> ConversationTurn:
        def _work() -> ConversationTurn:
            self._sequence += 1
            turn = ConversationTurn(
                session_id=session_id,
                question_key=question_key,
                sequence=self._sequence,
                kind=TurnKind(kind),
                content=content,
                created_at=created_at,
            )
            rows = self._turns.setdefault(session_id, [])
            rows.append(turn)

            def _undo() -> None:
                rows.pop()
                self._sequence -= 1

            self._storage.journal(_undo)
            return turn

        return self._storage.commit(_work)

    def turns_for(self, session_id: str, question_key: str | None = None) -> list[ConversationTurn]:
        with self._storage.lock:
            rows = self._turns.get(session_id, ())
            if question_key is None:
                return list(rows)
            return [turn for turn in rows if turn.question_key == question_key]

    def has_turn(self, session_id: str, question_key: str, kind: TurnKind) -> bool:
        with self._storage.lock:
            return any(
                turn.question_key == question_key and turn.kind is kind for turn in self._turns.get(session_id, ())
            )
