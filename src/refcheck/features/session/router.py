from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import APIRouter
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ...core.errors import ReferenceSessionError
from .schemas import _APIModel
from .service import SessionManager

__all__ = ["AnswerRequest", "RevisionRequest", "create_session_routers"]

logger = logging.getLogger(__name__)

_RETRY_AFTER_SECONDS = "1"


class AnswerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str
    question_index: int
    answer: str | None = None
    skip_polish: bool = Field(False, alias="skip_proofreading")


class RevisionRequest(BaseModel):
    answer_id: str
    new_answer: str | None = None
    revision_reason: str | None = None
    edited_by: str | None = None

    @model_validator(mode="after")
    def _normalize(self) -> RevisionRequest:
        self.revision_reason = (self.revision_reason or "").strip() or None
        self.edited_by = (self.edited_by or "").strip() or None
        return self


class _SessionController:
    def __init__(self, manager: SessionManager) -> None:
        self.manager = manager

    # ------------------------------------------------------------------ helpers
    def _json_response(self, payload: _APIModel) -> JSONResponse:
        return JSONResponse(payload.to_dict())

    def _error_response(self, exc: ReferenceSessionError) -> JSONResponse:
        headers = {"Retry-After": _RETRY_AFTER_SECONDS} if exc.retryable else None
        return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)

    async def _respond(self, call: Callable[[], Awaitable[_APIModel]]) -> Response:
        try:
            payload = await call()
        except ReferenceSessionError as exc:
            logger.debug("request rejected", extra={"error": exc.code})
            return self._error_response(exc)
        return self._json_response(payload)

    # ------------------------------------------------------------------ actions
    async def init(self, token: str) -> Response:
        return await self._respond(lambda: self.manager.init_async(token))

    async def answer(self, body: AnswerRequest) -> Response:
        return await self._respond(
            lambda: self.manager.submit_answer_async(
                body.session_id, body.question_index, body.answer, skip_polish=body.skip_polish
            )
        )

    async def revise(self, body: RevisionRequest) -> Response:
        return await self._respond(
            lambda: self.manager.revise_async(
                body.answer_id, body.new_answer, body.revision_reason, editor=body.edited_by
            )
        )

    async def versions(self, answer_id: str) -> Response:
        return await self._respond(lambda: self.manager.list_versions_async(answer_id))

    async def review(self, session_id: str) -> Response:
        return await self._respond(lambda: self.manager.review_async(session_id))

    async def complete(self, session_id: str) -> Response:
        return await self._respond(lambda: self.manager.complete_async(session_id))

    async def seal(self, session_id: str) -> Response:
        return await self._respond(lambda: self.manager.verify_seal_async(session_id))


def _register(router: APIRouter, controller: _SessionController) -> APIRouter:
    @router.get("/conversation/init")
    async def init_conversation(token: str) -> Response:
        return await controller.init(token)

    @router.post("/conversation/answer")
    async def submit_answer(body: AnswerRequest) -> Response:
        return await controller.answer(body)

    @router.post("/conversation/revise")
    async def revise_answer(body: RevisionRequest) -> Response:
        return await controller.revise(body)

    @router.get("/responses/{answer_id}/versions")
    async def list_versions(answer_id: str) -> Response:
        return await controller.versions(answer_id)

    @router.get("/conversation/review/{session_id}")
    async def review_session(session_id: str) -> Response:
        return await controller.review(session_id)

    @router.post("/conversation/complete/{session_id}")
    async def complete_session(session_id: str) -> Response:
        return await controller.complete(session_id)

    @router.get("/conversation/seal/{session_id}")
    async def verify_seal(session_id: str) -> Response:
        return await controller.seal(session_id)

    return router


def create_session_routers(manager: SessionManager) -> tuple[APIRouter, APIRouter]:
    controller = _SessionController(manager)
    router_v1 = _register(APIRouter(prefix="/api/v1", tags=["conversation"]), controller)
    router_legacy = _register(APIRouter(prefix="/api", tags=["conversation-legacy"]), controller)
    return router_v1, router_legacy
