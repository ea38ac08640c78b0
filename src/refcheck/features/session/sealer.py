"""Completion sealing.

The seal digest is a SHA-256 over a canonical serialization of the session's
final answers.  Every field is length-prefixed (``<len>:<value>``); fields are
joined with the ASCII unit separator and records with the record separator,
so no answer content can be crafted to collide with a different answer set.

Record layout, in order::

    session_id | template_id | completed_at
    key | version | content        (one record per template question)

Unanswered optional questions contribute version ``0`` and empty content.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping
from datetime import datetime, timezone

from ...core.models import AnswerVersion, CompletionSeal, Template
from ...storage.base import Storage

__all__ = ["CompletionSealer", "canonical_payload"]

logger = logging.getLogger(__name__)

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
ALGORITHM = "sha256"


def _field(value: str) -> str:
    return f"{len(value)}:{value}"


def _record(*values: str) -> str:
    return _FIELD_SEP.join(_field(value) for value in values)


def _timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def canonical_payload(
    session_id: str,
    template: Template,
    completed_at: datetime,
    current: Mapping[str, AnswerVersion],
) -> bytes:
    records = [_record(session_id, template.template_id, _timestamp(completed_at))]
    for question in template.questions:
        version = current.get(question.key)
        if version is None:
            records.append(_record(question.key, "0", ""))
        else:
            records.append(_record(question.key, str(version.version), version.content))
    return _RECORD_SEP.join(records).encode("utf-8")


class CompletionSealer:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def digest(
        self,
        session_id: str,
        template: Template,
        completed_at: datetime,
        current: Mapping[str, AnswerVersion],
    ) -> str:
        payload = canonical_payload(session_id, template, completed_at, current)
        return hashlib.sha256(payload).hexdigest()

    def seal(self, session_id: str, template: Template, completed_at: datetime) -> CompletionSeal:
        """Write the seal once; a second call raises ``AlreadyCompleted``.

        Must run inside the caller's storage transaction so the seal and the
        state change land together.
        """

        digest = self.digest(session_id, template, completed_at, self._current_versions(session_id))
        seal = self._storage.sessions.insert_seal(
            CompletionSeal(session_id=session_id, digest=digest, completed_at=completed_at, algorithm=ALGORITHM)
        )
        logger.info("session sealed", extra={"session_id": session_id, "digest": digest})
        return seal

    def verify(self, seal: CompletionSeal, template: Template) -> bool:
        expected = self.digest(seal.session_id, template, seal.completed_at, self._current_versions(seal.session_id))
        return hmac.compare_digest(expected, seal.digest)

    def _current_versions(self, session_id: str) -> dict[str, AnswerVersion]:
        def _view() -> dict[str, AnswerVersion]:
            versions: dict[str, AnswerVersion] = {}
            for key, answer in self._storage.versions.answers_for_session(session_id).items():
                current = self._storage.versions.current(answer.answer_id)
                if current is not None:
                    versions[key] = current
            return versions

        return self._storage.read(_view)
