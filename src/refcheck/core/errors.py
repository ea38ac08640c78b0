"""Error taxonomy for the reference-session engine.

Every error carries a stable ``code`` and the HTTP status the router maps it
to.  Answer validation failures during the conversation are *not* raised; they
are encoded in the submit result as ``needs_clarification``.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "AlreadyCompleted",
    "AnswerNotFound",
    "ConcurrentModification",
    "InvalidToken",
    "NotReadyForReview",
    "QuestionIndexMismatch",
    "ReferenceSessionError",
    "SessionNotFound",
    "SessionNotSealed",
    "TransientStorageError",
    "ValidationFailed",
]


class ReferenceSessionError(Exception):
    code = "session_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class InvalidToken(ReferenceSessionError):
    code = "invalid_token"
    status_code = 404


class SessionNotFound(ReferenceSessionError):
    code = "session_not_found"
    status_code = 404


class AnswerNotFound(ReferenceSessionError):
    code = "answer_not_found"
    status_code = 404


class QuestionIndexMismatch(ReferenceSessionError):
    """Stale or duplicated client request; the client should re-init."""

    code = "question_index_mismatch"
    status_code = 409

    def __init__(self, expected: int | None, received: int) -> None:
        super().__init__(f"question index {received} does not match current question {expected}")
        self.expected = expected
        self.received = received

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["expected_index"] = self.expected
        data["received_index"] = self.received
        return data


class ValidationFailed(ReferenceSessionError):
    code = "validation_failed"
    status_code = 422


class AlreadyCompleted(ReferenceSessionError):
    code = "already_completed"
    status_code = 409


class NotReadyForReview(ReferenceSessionError):
    code = "not_ready_for_review"
    status_code = 409


class ConcurrentModification(ReferenceSessionError):
    code = "concurrent_modification"
    status_code = 409
    retryable = True


class TransientStorageError(RuntimeError):
    """Raised by a storage backend for failures worth retrying."""


class SessionNotSealed(ReferenceSessionError):
    code = "session_not_sealed"
    status_code = 409
