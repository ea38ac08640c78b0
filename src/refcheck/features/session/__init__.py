"""Session feature: conversation engine, schemas, and API router."""

from .router import create_session_routers
from .schemas import (
    AcceptedResult,
    CompletionResult,
    InitResponse,
    NeedsClarificationResult,
    ProgressPayload,
    QuestionPayload,
    ReadyForReviewResult,
    ReviewItem,
    ReviewPayload,
    RevisionResult,
    SealPayload,
    SealVerification,
    VersionListPayload,
    VersionPayload,
)
from .service import SessionManager

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
    "SessionManager",
    "VersionListPayload",
    "VersionPayload",
    "create_session_routers",
]
