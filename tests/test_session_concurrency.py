from __future__ import annotations

import threading

import pytest

from refcheck.core.config import EngineConfig
from refcheck.core.errors import ConcurrentModification, InvalidToken, QuestionIndexMismatch
from refcheck.core.models import TurnKind
from refcheck.features.session import AcceptedResult, SessionManager


def test_parallel_duplicate_submissions_store_one_answer(manager: SessionManager) -> None:
    token = manager.issue_token("two-q")
    sid = manager.init(token).session_id
    workers = 8
    barrier = threading.Barrier(workers)
    outcomes: list[object] = []

    def submit() -> None:
        barrier.wait()
        try:
            outcomes.append(manager.submit_answer(sid, 0, "Great teammate"))
        except QuestionIndexMismatch as exc:
            outcomes.append(exc)

    threads = [threading.Thread(target=submit) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    accepted = [item for item in outcomes if isinstance(item, AcceptedResult)]
    rejected = [item for item in outcomes if isinstance(item, QuestionIndexMismatch)]
    assert len(accepted) == 1
    assert len(rejected) == workers - 1

    answer_id = manager.storage.versions.answer_for(sid, "q1").answer_id
    assert len(manager.list_versions(answer_id).versions) == 1
    user_answers = [
        turn for turn in manager.storage.turns.turns_for(sid, "q1") if turn.kind is TurnKind.USER_ANSWER
    ]
    assert len(user_answers) == 1


def test_parallel_revisions_get_distinct_version_numbers(manager: SessionManager) -> None:
    token = manager.issue_token("two-q")
    sid = manager.init(token).session_id
    manager.submit_answer(sid, 0, "Great teammate")
    answer_id = manager.storage.versions.answer_for(sid, "q1").answer_id
    workers = 6
    barrier = threading.Barrier(workers)

    def revise(n: int) -> None:
        barrier.wait()
        manager.revise(answer_id, f"Revision {n}")

    threads = [threading.Thread(target=revise, args=(n,)) for n in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    versions = manager.list_versions(answer_id).versions
    assert [row.version for row in versions] == list(range(1, workers + 2))
    assert versions[0].content == "Great teammate"


def test_concurrent_inits_with_one_token_share_a_session(manager: SessionManager) -> None:
    token = manager.issue_token("two-q")
    workers = 6
    barrier = threading.Barrier(workers)
    session_ids: list[str] = []

    def init() -> None:
        barrier.wait()
        session_ids.append(manager.init(token).session_id)

    threads = [threading.Thread(target=init) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(session_ids) == workers
    assert len(set(session_ids)) == 1
    posed = [
        turn
        for turn in manager.storage.turns.turns_for(session_ids[0], "q1")
        if turn.kind is TurnKind.QUESTION_POSED
    ]
    assert len(posed) == 1


def test_busy_session_raises_concurrent_modification(registry) -> None:
    manager = SessionManager(registry, config=EngineConfig(lock_timeout=0.05))
    sid = manager.init(manager.issue_token("two-q")).session_id

    with manager._locks.hold(sid):
        with pytest.raises(ConcurrentModification) as excinfo:
            manager.submit_answer(sid, 0, "Great teammate")
        assert excinfo.value.retryable is True
        assert excinfo.value.status_code == 409
        # Reads never wait on the session lock.
        assert manager.review(sid).progress.answered == 0

    assert isinstance(manager.submit_answer(sid, 0, "Great teammate"), AcceptedResult)


def test_other_sessions_are_not_blocked(registry) -> None:
    manager = SessionManager(registry, config=EngineConfig(lock_timeout=0.05))
    busy = manager.init(manager.issue_token("two-q")).session_id
    free = manager.init(manager.issue_token("two-q")).session_id

    with manager._locks.hold(busy):
        assert isinstance(manager.submit_answer(free, 0, "Great teammate"), AcceptedResult)


def test_lock_registry_does_not_grow(manager: SessionManager) -> None:
    for n in range(200):
        with pytest.raises(InvalidToken):
            manager.init(f"unknown-{n}")
    assert len(manager._locks) == 0

    for _ in range(20):
        sid = manager.init(manager.issue_token("two-q")).session_id
        manager.submit_answer(sid, 0, "Great teammate")
    assert len(manager._locks) == 0


def test_lock_entry_survives_while_waiters_remain(registry) -> None:
    manager = SessionManager(registry, config=EngineConfig(lock_timeout=0.05))
    sid = manager.init(manager.issue_token("two-q")).session_id

    with manager._locks.hold(sid):
        assert len(manager._locks) == 1
        with pytest.raises(ConcurrentModification):
            manager.submit_answer(sid, 0, "Great teammate")
        assert len(manager._locks) == 1
    assert len(manager._locks) == 0
