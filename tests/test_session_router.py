from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from refcheck.core.config import EngineConfig
from refcheck.features.session import SessionManager
from refcheck.features.session.router import create_session_routers


def _client(manager: SessionManager) -> TestClient:
    router_v1, router_legacy = create_session_routers(manager)
    app = FastAPI()
    app.include_router(router_v1)
    app.include_router(router_legacy)
    return TestClient(app)


def test_full_conversation_over_http(manager: SessionManager) -> None:
    client = _client(manager)
    token = manager.issue_token("two-q", {"candidate_name": "Sam Lee"})

    init = client.get("/api/v1/conversation/init", params={"token": token})
    assert init.status_code == 200
    data = init.json()
    sid = data["session_id"]
    assert data["status"] == "in_progress"
    assert data["question"]["key"] == "q1"
    assert data["question"]["type"] == "textarea"
    assert "scale_min" not in data["question"]
    assert data["context"] == {"candidate_name": "Sam Lee"}

    first = client.post(
        "/api/v1/conversation/answer",
        json={"session_id": sid, "question_index": 0, "answer": "Great teammate", "skip_proofreading": True},
    ).json()
    assert first["kind"] == "accepted"
    assert first["next_question"]["index"] == 1

    second = client.post(
        "/api/v1/conversation/answer",
        json={"session_id": sid, "question_index": 1, "answer": "Always on time"},
    ).json()
    assert second["kind"] == "ready_for_review"
    assert second["status"] == "ready_for_review"
    assert second["progress"] == {"answered": 2, "total": 2, "percent": 100}

    review = client.get(f"/api/v1/conversation/review/{sid}").json()
    assert review["total_questions"] == 2
    assert [item["question_key"] for item in review["review_items"]] == ["q1", "q2"]
    answer_id = review["review_items"][0]["answer_id"]

    revision = client.post(
        "/api/v1/conversation/revise",
        json={"answer_id": answer_id, "new_answer": "Great teammate and mentor", "revision_reason": " fixed typo "},
    ).json()
    assert revision["version"] == 2
    assert revision["edit_notes"] == "fixed typo"
    assert revision["edited_by"] == "referee"

    versions = client.get(f"/api/v1/responses/{answer_id}/versions").json()
    assert [row["version"] for row in versions["versions"]] == [1, 2]
    assert [row["is_original"] for row in versions["versions"]] == [True, False]

    done = client.post(f"/api/v1/conversation/complete/{sid}")
    assert done.status_code == 200
    assert done.json()["status"] == "completed"
    digest = done.json()["seal"]["digest"]

    seal = client.get(f"/api/v1/conversation/seal/{sid}").json()
    assert seal["valid"] is True
    assert seal["seal"]["digest"] == digest
    assert seal["seal"]["algorithm"] == "sha256"

    again = client.post(f"/api/v1/conversation/complete/{sid}")
    assert again.status_code == 409
    assert again.json()["error"] == "already_completed"


def test_error_codes_map_to_http_statuses(manager: SessionManager) -> None:
    client = _client(manager)

    missing = client.get("/api/v1/conversation/init", params={"token": "nope"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "invalid_token"

    sid = client.get("/api/v1/conversation/init", params={"token": manager.issue_token("two-q")}).json()["session_id"]

    stale = client.post("/api/v1/conversation/answer", json={"session_id": sid, "question_index": 3, "answer": "x"})
    assert stale.status_code == 409
    assert stale.json() == {
        "error": "question_index_mismatch",
        "message": stale.json()["message"],
        "expected_index": 0,
        "received_index": 3,
    }

    blank = client.post("/api/v1/conversation/answer", json={"session_id": sid, "question_index": 0, "answer": ""})
    assert blank.status_code == 200
    assert blank.json()["kind"] == "needs_clarification"
    assert blank.json()["same_question"]["index"] == 0

    early = client.post(f"/api/v1/conversation/complete/{sid}")
    assert early.status_code == 409
    assert early.json()["error"] == "not_ready_for_review"

    unsealed = client.get(f"/api/v1/conversation/seal/{sid}")
    assert unsealed.status_code == 409
    assert unsealed.json()["error"] == "session_not_sealed"

    assert client.get("/api/v1/responses/ans_missing/versions").status_code == 404
    assert client.get("/api/v1/conversation/review/missing").json()["error"] == "session_not_found"

    client.post("/api/v1/conversation/answer", json={"session_id": sid, "question_index": 0, "answer": "Fine"})
    answer_id = manager.storage.versions.answer_for(sid, "q1").answer_id
    invalid = client.post("/api/v1/conversation/revise", json={"answer_id": answer_id, "new_answer": "  "})
    assert invalid.status_code == 422
    assert invalid.json()["error"] == "validation_failed"


def test_malformed_body_is_rejected_by_request_validation(manager: SessionManager) -> None:
    client = _client(manager)
    response = client.post("/api/v1/conversation/answer", json={"question_index": "first"})
    assert response.status_code == 422


def test_legacy_prefix_serves_the_same_routes(manager: SessionManager) -> None:
    client = _client(manager)
    token = manager.issue_token("mixed")

    data = client.get("/api/conversation/init", params={"token": token}).json()
    assert data["question"]["key"] == "intro"
    result = client.post(
        "/api/conversation/answer",
        json={"session_id": data["session_id"], "question_index": 0, "answer": "Former manager"},
    ).json()
    assert result["next_question"]["type"] == "scale"
    assert result["next_question"]["scale_max"] == 5

    same = client.get("/api/v1/conversation/init", params={"token": token}).json()
    assert same["session_id"] == data["session_id"]
    assert same["progress"]["answered"] == 1


def test_busy_session_returns_retryable_conflict(registry) -> None:
    manager = SessionManager(registry, config=EngineConfig(lock_timeout=0.05))
    client = _client(manager)
    sid = manager.init(manager.issue_token("two-q")).session_id

    with manager._locks.hold(sid):
        busy = client.post(
            "/api/v1/conversation/answer", json={"session_id": sid, "question_index": 0, "answer": "Hi"}
        )
    assert busy.status_code == 409
    assert busy.json()["error"] == "concurrent_modification"
    assert busy.headers["Retry-After"] == "1"

    ok = client.post("/api/v1/conversation/answer", json={"session_id": sid, "question_index": 0, "answer": "Hi"})
    assert ok.status_code == 200
