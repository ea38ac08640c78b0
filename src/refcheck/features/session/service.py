from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from ...core.config import EngineConfig
from ...core.errors import (
    AlreadyCompleted,
    AnswerNotFound,
    InvalidToken,
    NotReadyForReview,
    QuestionIndexMismatch,
    SessionNotFound,
    SessionNotSealed,
    ValidationFailed,
)
from ...core.models import (
    AnswerType,
    AnswerVersion,
    CompletionSeal,
    Progress,
    Question,
    Session,
    SessionState,
    Template,
    TokenGrant,
    TurnKind,
)
from ...core.templates import TemplateRegistry
from ...storage.base import Storage
from .concurrency import SessionLocks, run_blocking
from .polish import PolishDispatcher, Polisher
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
    SubmitResult,
    TurnPayload,
    VersionListPayload,
    VersionPayload,
)
from .sealer import CompletionSealer
from .sequencer import QuestionSequencer
from .validator import AnswerValidator, Verdict

__all__ = ["DEFAULT_EDITOR", "DEFAULT_REVISION_REASON", "SessionManager"]

logger = logging.getLogger(__name__)

DEFAULT_EDITOR = "referee"
DEFAULT_REVISION_REASON = "User revision during review"
_REVIEW_PROMPT = "Great! You've answered all the required questions. Please review your answers before submitting."

Responder = Callable[[QuestionPayload, int], str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Sole entry point of the reference-session engine.

    Owns the session state machine and orchestrates the sequencer, validator,
    stores and sealer.  Mutations (``submit_answer``, ``revise``, ``complete``)
    are serialized per session; every write of one operation is committed as a
    single storage transaction, so callers always get back the authoritative
    new state.
    """

    def __init__(
        self,
        templates: TemplateRegistry,
        *,
        config: EngineConfig | None = None,
        storage: Storage | None = None,
        polisher: Polisher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.templates = templates
        self.storage = storage or Storage(
            retries=self.config.storage_retries,
            retry_wait=self.config.storage_retry_wait,
        )
        self.sequencer = QuestionSequencer()
        self.validator = AnswerValidator(max_chars=self.config.max_answer_chars)
        self.sealer = CompletionSealer(self.storage)
        self.polish = PolishDispatcher(self.storage, polisher)
        self._locks = SessionLocks(timeout=self.config.lock_timeout)
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------ tokens
    def issue_token(self, template_id: str, context: Mapping[str, Any] | None = None) -> str:
        """Mint an access token for a referee; called by the request workflow."""

        self.templates.get(template_id)
        token = secrets.token_urlsafe(24)
        self.storage.sessions.add_grant(
            TokenGrant(token=token, template_id=template_id, issued_at=self._clock(), context=dict(context or {}))
        )
        logger.info("token issued", extra={"template_id": template_id})
        return token

    # -------------------------------------------------------------------- init
    def init(self, token: str) -> InitResponse:
        grant = self.storage.sessions.get_grant(token)
        if grant is None:
            raise InvalidToken("access link is invalid or has expired")
        session_id = grant.session_id
        if session_id is None:
            with self._locks.hold(f"token:{token}"):
                # Re-read: a concurrent init may have bound the token meanwhile.
                grant = self.storage.sessions.get_grant(token) or grant
                if grant.session_id is None:
                    session_id = self._create_session(grant).session_id
                else:
                    session_id = grant.session_id

        with self._locks.hold(session_id):
            stored = self._require_session(session_id)
            template = self._template(stored)
            now = self._clock()
            session, answered = self.storage.commit(lambda: self._reconcile(stored, template, now))

        progress = self.sequencer.progress(template, answered)
        pointer = session.current_index
        question = None
        pending = None
        if pointer is not None and session.state in (SessionState.IN_PROGRESS, SessionState.NEEDS_CLARIFICATION):
            question = _question_payload(template, pointer)
        elif pointer is not None and session.state is SessionState.READY_FOR_REVIEW:
            pending = _question_payload(template, pointer)
        return InitResponse(
            session_id=session.session_id,
            status=session.state,
            progress=_progress_payload(progress),
            question=question,
            pending_optional=pending,
            context=dict(session.context),
        )

    async def init_async(self, token: str) -> InitResponse:
        return await run_blocking(self.init, token)

    # ------------------------------------------------------------------ submit
    def submit_answer(
        self,
        session_id: str,
        question_index: int,
        answer: str | None,
        *,
        skip_polish: bool = False,
    ) -> SubmitResult:
        with self._locks.hold(session_id):
            session = self._require_session(session_id)
            if session.state is SessionState.COMPLETED:
                raise AlreadyCompleted(f"session '{session_id}' is already completed")
            if session.current_index is None or question_index != session.current_index:
                raise QuestionIndexMismatch(session.current_index, question_index)
            template = self._template(session)
            question = template.question_at(question_index)
            verdict = self.validator.validate(question, answer)
            now = self._clock()

            if not verdict.accepted:
                result = self.storage.commit(
                    lambda: self._record_clarification(session, template, question_index, verdict, now)
                )
                logger.debug(
                    "clarification requested",
                    extra={"session_id": session_id, "question_key": question.key},
                )
                return result

            result, version, created = self.storage.commit(
                lambda: self._record_answer(session, template, question, verdict, now)
            )
            logger.debug(
                "answer accepted",
                extra={"session_id": session_id, "question_key": question.key, "status": result.status.value},
            )

        if created and not skip_polish:
            self.polish.schedule(session_id, question, version)
        return result

    async def submit_answer_async(
        self,
        session_id: str,
        question_index: int,
        answer: str | None,
        *,
        skip_polish: bool = False,
    ) -> SubmitResult:
        return await run_blocking(self.submit_answer, session_id, question_index, answer, skip_polish=skip_polish)

    # ------------------------------------------------------------------ revise
    def revise(
        self,
        answer_id: str,
        new_answer: str | None,
        reason: str | None = None,
        *,
        editor: str | None = None,
    ) -> RevisionResult:
        answer = self.storage.versions.get_answer(answer_id)
        if answer is None:
            raise AnswerNotFound(f"answer '{answer_id}' not found")

        with self._locks.hold(answer.session_id):
            session = self._require_session(answer.session_id)
            if session.state is SessionState.COMPLETED:
                raise AlreadyCompleted(f"session '{session.session_id}' is already completed")
            template = self._template(session)
            question = template.question_at(template.index_of(answer.question_key))
            verdict = self.validator.validate(question, new_answer)
            if not verdict.accepted:
                raise ValidationFailed(verdict.message)
            now = self._clock()
            edited_by = (editor or "").strip() or DEFAULT_EDITOR
            notes = (reason or "").strip() or DEFAULT_REVISION_REASON

            def _work() -> AnswerVersion:
                version = self.storage.versions.create_version(
                    session.session_id,
                    answer.question_key,
                    verdict.content,
                    created_at=now,
                    editor=edited_by,
                    reason=notes,
                    is_original=False,
                )
                self.storage.sessions.update(replace(session, updated_at=now))
                return version

            version = self.storage.commit(_work)

        logger.debug(
            "answer revised",
            extra={"session_id": session.session_id, "answer_id": answer_id, "version": version.version},
        )
        return RevisionResult(
            answer_id=answer_id,
            question_key=answer.question_key,
            version=version.version,
            content=version.content,
            edited_by=edited_by,
            edit_notes=notes,
            edited_at=now,
        )

    async def revise_async(
        self,
        answer_id: str,
        new_answer: str | None,
        reason: str | None = None,
        *,
        editor: str | None = None,
    ) -> RevisionResult:
        return await run_blocking(self.revise, answer_id, new_answer, reason, editor=editor)

    # ------------------------------------------------------------------- reads
    def list_versions(self, answer_id: str) -> VersionListPayload:
        def _view() -> VersionListPayload | None:
            answer = self.storage.versions.get_answer(answer_id)
            if answer is None:
                return None
            return VersionListPayload(
                answer_id=answer_id,
                question_key=answer.question_key,
                current_version=answer.current_version,
                versions=[_version_payload(row) for row in self.storage.versions.list_versions(answer_id)],
            )

        payload = self.storage.read(_view)
        if payload is None:
            raise AnswerNotFound(f"answer '{answer_id}' not found")
        return payload

    async def list_versions_async(self, answer_id: str) -> VersionListPayload:
        return await run_blocking(self.list_versions, answer_id)

    def review(self, session_id: str) -> ReviewPayload:
        return self.storage.read(lambda: self._review_snapshot(session_id))

    async def review_async(self, session_id: str) -> ReviewPayload:
        return await run_blocking(self.review, session_id)

    # ---------------------------------------------------------------- complete
    def complete(self, session_id: str) -> CompletionResult:
        with self._locks.hold(session_id):
            session = self._require_session(session_id)
            if session.state is SessionState.COMPLETED or self.storage.sessions.get_seal(session_id) is not None:
                raise AlreadyCompleted(f"session '{session_id}' is already completed")
            if session.state is not SessionState.READY_FOR_REVIEW:
                raise NotReadyForReview(f"session '{session_id}' has unanswered required questions")
            template = self._template(session)
            now = self._clock()

            def _work() -> CompletionSeal:
                seal = self.sealer.seal(session_id, template, now)
                self.storage.sessions.update(
                    replace(session, state=SessionState.COMPLETED, current_index=None, updated_at=now)
                )
                return seal

            seal = self.storage.commit(_work)

        return CompletionResult(session_id=session_id, status=SessionState.COMPLETED, seal=_seal_payload(seal))

    async def complete_async(self, session_id: str) -> CompletionResult:
        return await run_blocking(self.complete, session_id)

    def verify_seal(self, session_id: str) -> SealVerification:
        session = self._require_session(session_id)
        seal = self.storage.sessions.get_seal(session_id)
        if seal is None:
            raise SessionNotSealed(f"session '{session_id}' has not been completed")
        valid = self.sealer.verify(seal, self._template(session))
        if not valid:
            logger.warning("seal mismatch", extra={"session_id": session_id})
        return SealVerification(session_id=session_id, seal=_seal_payload(seal), valid=valid)

    async def verify_seal_async(self, session_id: str) -> SealVerification:
        return await run_blocking(self.verify_seal, session_id)

    def drive_session(self, token: str, responder: Responder, *, max_turns: int = 200) -> InitResponse:
        """Answer questions via ``responder`` until the session leaves the conversation.

        ``responder`` receives the active question and the attempt number for
        that question (starting at 1) and returns the answer text.  Returns the
        final ``init`` view, which is in review unless ``max_turns`` ran out.
        """

        view = self.init(token)
        attempts: dict[int, int] = {}
        for _ in range(max_turns):
            question = view.question
            if question is None:
                return view
            attempts[question.index] = attempts.get(question.index, 0) + 1
            self.submit_answer(view.session_id, question.index, responder(question, attempts[question.index]))
            view = self.init(token)
        logger.debug("drive_session stopped at max_turns", extra={"session_id": view.session_id})
        return view

    # ----------------------------------------------------------------- helpers
    def _create_session(self, grant: TokenGrant) -> Session:
        template = self.templates.get(grant.template_id)
        now = self._clock()
        session_id = _sid()
        while self.storage.sessions.get(session_id) is not None:
            session_id = _sid()
        session = Session(
            session_id=session_id,
            token=grant.token,
            template_id=template.template_id,
            state=SessionState.IN_PROGRESS,
            current_index=0,
            created_at=now,
            updated_at=now,
            context=dict(grant.context),
        )
        self.storage.sessions.insert(session)
        logger.info(
            "session created",
            extra={"session_id": session_id, "template_id": template.template_id, "questions": len(template)},
        )
        return session

    def _reconcile(self, session: Session, template: Template, now: datetime) -> tuple[Session, set[str]]:
        answered = set(self.storage.versions.answers_for_session(session.session_id))
        if self.storage.sessions.get_seal(session.session_id) is not None:
            state, pointer = SessionState.COMPLETED, None
        else:
            pointer = self.sequencer.next_index(template, answered)
            if self.sequencer.ready_for_review(template, answered):
                state = SessionState.READY_FOR_REVIEW
            elif session.state is SessionState.NEEDS_CLARIFICATION:
                state = SessionState.NEEDS_CLARIFICATION
            else:
                state = SessionState.IN_PROGRESS
        current = session
        if (state, pointer) != (session.state, session.current_index):
            current = self.storage.sessions.update(replace(session, state=state, current_index=pointer, updated_at=now))
        if state is not SessionState.COMPLETED and pointer is not None:
            self._pose(current, template, pointer, now)
        return current, answered

    def _record_clarification(
        self,
        session: Session,
        template: Template,
        index: int,
        verdict: Verdict,
        now: datetime,
    ) -> NeedsClarificationResult:
        question = template.question_at(index)
        self.storage.turns.append_turn(
            session.session_id, question.key, TurnKind.CLARIFICATION_REQUESTED, verdict.message, created_at=now
        )
        # Clarifying a trailing optional question does not take the session out of review.
        state = (
            SessionState.READY_FOR_REVIEW
            if session.state is SessionState.READY_FOR_REVIEW
            else SessionState.NEEDS_CLARIFICATION
        )
        self.storage.sessions.update(replace(session, state=state, updated_at=now))
        answered = self.storage.versions.answers_for_session(session.session_id)
        return NeedsClarificationResult(
            status=state,
            progress=_progress_payload(self.sequencer.progress(template, answered)),
            same_question=_question_payload(template, index),
            message=verdict.message,
        )

    def _record_answer(
        self,
        session: Session,
        template: Template,
        question: Question,
        verdict: Verdict,
        now: datetime,
    ) -> tuple[SubmitResult, AnswerVersion, bool]:
        version, created = self.storage.versions.create_original(
            session.session_id, question.key, verdict.content, created_at=now
        )
        if created:
            self.storage.turns.append_turn(
                session.session_id, question.key, TurnKind.USER_ANSWER, verdict.content, created_at=now
            )
            self.storage.turns.append_turn(
                session.session_id, question.key, TurnKind.ACKNOWLEDGMENT, verdict.message, created_at=now
            )
        answered = set(self.storage.versions.answers_for_session(session.session_id))
        pointer = self.sequencer.next_index(template, answered)
        ready = self.sequencer.ready_for_review(template, answered)
        state = SessionState.READY_FOR_REVIEW if ready else SessionState.IN_PROGRESS
        updated = self.storage.sessions.update(replace(session, state=state, current_index=pointer, updated_at=now))
        if pointer is not None:
            self._pose(updated, template, pointer, now)
        progress = _progress_payload(self.sequencer.progress(template, answered))

        result: SubmitResult
        if ready or pointer is None:
            result = ReadyForReviewResult(
                progress=progress,
                message=_REVIEW_PROMPT,
                pending_optional=_question_payload(template, pointer) if pointer is not None else None,
            )
        else:
            result = AcceptedResult(
                status=state,
                progress=progress,
                next_question=_question_payload(template, pointer),
                message=verdict.message,
            )
        return result, version, created

    def _pose(self, session: Session, template: Template, index: int, now: datetime) -> None:
        question = template.question_at(index)
        if not self.storage.turns.has_turn(session.session_id, question.key, TurnKind.QUESTION_POSED):
            self.storage.turns.append_turn(
                session.session_id, question.key, TurnKind.QUESTION_POSED, question.text, created_at=now
            )

    def _review_snapshot(self, session_id: str) -> ReviewPayload:
        session = self._require_session(session_id)
        template = self._template(session)
        answers = self.storage.versions.answers_for_session(session_id)
        turns_by_key: dict[str, list[TurnPayload]] = {}
        for turn in self.storage.turns.turns_for(session_id):
            turns_by_key.setdefault(turn.question_key, []).append(
                TurnPayload(sequence=turn.sequence, kind=turn.kind, content=turn.content, created_at=turn.created_at)
            )

        items: list[ReviewItem] = []
        for index, question in enumerate(template.questions):
            item = ReviewItem(
                question_index=index,
                question_key=question.key,
                question_text=question.text,
                answer_type=question.answer_type,
                required=question.required,
                conversation_turns=turns_by_key.get(question.key, []),
            )
            answer = answers.get(question.key)
            current = self.storage.versions.current(answer.answer_id) if answer else None
            if answer is not None and current is not None:
                item.answer_id = answer.answer_id
                item.current_version = current.version
                item.raw_answer = current.content
                item.polished_answer = current.display_content
                item.word_count = len(current.content.split())
                item.answered_at = answer.created_at
            items.append(item)

        seal = self.storage.sessions.get_seal(session_id)
        return ReviewPayload(
            session_id=session_id,
            status=session.state,
            total_questions=len(template),
            progress=_progress_payload(self.sequencer.progress(template, answers)),
            review_items=items,
            seal=_seal_payload(seal) if seal else None,
        )

    def _require_session(self, session_id: str) -> Session:
        session = self.storage.sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"session '{session_id}' not found")
        return session

    def _template(self, session: Session) -> Template:
        return self.templates.get(session.template_id)


def _sid(length: int = 12) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _question_payload(template: Template, index: int) -> QuestionPayload:
    question = template.question_at(index)
    is_scale = question.answer_type is AnswerType.SCALE
    return QuestionPayload(
        index=index,
        key=question.key,
        text=question.text,
        type=question.answer_type,
        required=question.required,
        scale_min=question.scale_min if is_scale else None,
        scale_max=question.scale_max if is_scale else None,
    )


def _progress_payload(progress: Progress) -> ProgressPayload:
    return ProgressPayload(answered=progress.answered, total=progress.total, percent=progress.percent)


def _version_payload(row: AnswerVersion) -> VersionPayload:
    return VersionPayload(
        answer_id=row.answer_id,
        version=row.version,
        content=row.content,
        polished_content=row.polished_content,
        is_original=row.is_original,
        created_at=row.created_at,
        edited_at=row.edited_at,
        edited_by=row.edited_by,
        edit_notes=row.edit_notes,
    )


def _seal_payload(seal: CompletionSeal) -> SealPayload:
    return SealPayload(digest=seal.digest, algorithm=seal.algorithm, completed_at=seal.completed_at)
