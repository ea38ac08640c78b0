from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from ...core.models import AnswerType, SessionState, TurnKind

__all__ = [
    "AcceptedResult",
    "CompletionResult",
    "InitResponse",
    "NeedsClarificationResult",
    "ProgressPayload",
    "QuestionPayload",
    "ReadyForReviewResult",
    "ReviewItem",
    "ReviewPayload",
    "RevisionResult",
    "SealPayload",
    "SealVerification",
    "SubmitResult",
    "TurnPayload",
    "VersionListPayload",
    "VersionPayload",
]


class _APIModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class QuestionPayload(_APIModel):
    index: int
    key: str
    text: str
    type: AnswerType
    required: bool
    scale_min: int | None = None
    scale_max: int | None = None


class ProgressPayload(_APIModel):
    answered: int
    total: int
    percent: int


class InitResponse(_APIModel):
    session_id: str
    status: SessionState
    progress: ProgressPayload
    question: QuestionPayload | None = None
    # Next unanswered optional question while the session sits in review.
    pending_optional: QuestionPayload | None = None
    context: dict[str, Any] = Field(default_factory=dict)


class AcceptedResult(_APIModel):
    kind: Literal["accepted"] = "accepted"
    status: SessionState
    progress: ProgressPayload
    next_question: QuestionPayload
    message: str


class NeedsClarificationResult(_APIModel):
    kind: Literal["needs_clarification"] = "needs_clarification"
    status: SessionState
    progress: ProgressPayload
    same_question: QuestionPayload
    message: str


class ReadyForReviewResult(_APIModel):
    kind: Literal["ready_for_review"] = "ready_for_review"
    status: SessionState = SessionState.READY_FOR_REVIEW
    progress: ProgressPayload
    message: str
    pending_optional: QuestionPayload | None = None


SubmitResult = Annotated[
    Union[AcceptedResult, NeedsClarificationResult, ReadyForReviewResult],
    Field(discriminator="kind"),
]


class VersionPayload(_APIModel):
    answer_id: str
    version: int
    content: str
    polished_content: str | None = None
    is_original: bool
    created_at: datetime
    edited_at: datetime | None = None
    edited_by: str | None = None
    edit_notes: str | None = None


class VersionListPayload(_APIModel):
    answer_id: str
    question_key: str
    current_version: int
    versions: list[VersionPayload]


class RevisionResult(_APIModel):
    answer_id: str
    question_key: str
    version: int
    content: str
    edited_by: str
    edit_notes: str
    edited_at: datetime


class TurnPayload(_APIModel):
    sequence: int
    kind: TurnKind
    content: str
    created_at: datetime


class ReviewItem(_APIModel):
    question_index: int
    question_key: str
    question_text: str
    answer_type: AnswerType
    required: bool
    answer_id: str | None = None
    current_version: int | None = None
    raw_answer: str | None = None
    polished_answer: str | None = None
    word_count: int = 0
    answered_at: datetime | None = None
    conversation_turns: list[TurnPayload] = Field(default_factory=list)


class SealPayload(_APIModel):
    digest: str
    algorithm: str
    completed_at: datetime


class ReviewPayload(_APIModel):
    session_id: str
    status: SessionState
    total_questions: int
    progress: ProgressPayload
    review_items: list[ReviewItem]
    seal: SealPayload | None = None


class CompletionResult(_APIModel):
    session_id: str
    status: SessionState
    seal: SealPayload


class SealVerification(_APIModel):
    session_id: str
    seal: SealPayload
    valid: bool
