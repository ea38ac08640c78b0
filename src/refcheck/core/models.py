from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SessionState(str, Enum):
    IN_PROGRESS = "in_progress"
    NEEDS_CLARIFICATION = "needs_clarification"
    READY_FOR_REVIEW = "ready_for_review"
    COMPLETED = "completed"


class AnswerType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    SCALE = "scale"


class TurnKind(str, Enum):
    QUESTION_POSED = "question_posed"
    USER_ANSWER = "user_answer"
    CLARIFICATION_REQUESTED = "clarification_requested"
    ACKNOWLEDGMENT = "acknowledgment"


@dataclass(frozen=True)
class Question:
    key: str
    text: str
    required: bool = True
    answer_type: AnswerType = AnswerType.TEXTAREA
    # Inclusive bounds, only meaningful for scale questions.
    scale_min: int = 1
    scale_max: int = 5

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Question:
        key = str(raw.get("key") or raw.get("id") or "").strip()
        text = str(raw.get("text") or "").strip()
        if not key or not text:
            raise ValueError("question requires a non-empty key and text")
        answer_type = AnswerType(str(raw.get("type") or raw.get("answer_type") or "textarea").strip().lower())
        return cls(
            key=key,
            text=text,
            required=_parse_bool(raw.get("required", True), field="required"),
            answer_type=answer_type,
            scale_min=int(raw.get("scale_min", 1)),
            scale_max=int(raw.get("scale_max", 5)),
        )


@dataclass(frozen=True)
class Template:
    """Ordered, externally authored question list a session works through."""

    template_id: str
    name: str
    questions: tuple[Question, ...]

    def __len__(self) -> int:
        return len(self.questions)

    def question_at(self, index: int) -> Question:
        return self.questions[index]

    def index_of(self, key: str) -> int:
        for index, question in enumerate(self.questions):
            if question.key == key:
                return index
        raise KeyError(key)

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(question.key for question in self.questions)


@dataclass(frozen=True)
class TokenGrant:
    token: str
    template_id: str
    issued_at: datetime
    context: dict[str, Any] = field(default_factory=dict)
    # Bound on first init; the token then only resumes this session.
    session_id: str | None = None


@dataclass(frozen=True)
class Session:
    session_id: str
    token: str
    template_id: str
    state: SessionState
    current_index: int | None
    created_at: datetime
    updated_at: datetime
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Answer:
    answer_id: str
    session_id: str
    question_key: str
    current_version: int
    created_at: datetime


@dataclass(frozen=True)
class AnswerVersion:
    answer_id: str
    version: int
    content: str
    is_original: bool
    created_at: datetime
    edited_at: datetime | None = None
    edited_by: str | None = None
    edit_notes: str | None = None
    # Display-only rewrite from the polisher; never part of the sealed content.
    polished_content: str | None = None

    @property
    def display_content(self) -> str:
        return self.polished_content if self.polished_content is not None else self.content


@dataclass(frozen=True)
class ConversationTurn:
    session_id: str
    question_key: str
    sequence: int
    kind: TurnKind
    content: str
    created_at: datetime


@dataclass(frozen=True)
class CompletionSeal:
    session_id: str
    digest: str
    completed_at: datetime
    algorithm: str = "sha256"


@dataclass(frozen=True)
class Progress:
    answered: int
    total: int

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 0
        return round(100 * self.answered / self.total)


_TRUE_STRINGS = frozenset({"true", "yes", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "0"})


def _parse_bool(value: Any, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"'{field}' must be a boolean, got {value!r}")
