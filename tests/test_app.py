from typing import Any

import pytest
from starlette.testclient import TestClient

from app.app import create_app
from app.config import Config
from conftest import USER_ID, FakeCompleter, failing_completer, make_profile
from mealfinder.repository import MemoryRepository


HEADERS = {"X-User-Id": USER_ID}


@pytest.fixture
def client():
    app = create_app(
        Config(db_url="memory://"),
        repository=MemoryRepository([make_profile()]),
        llm=failing_completer(),
    )
    with TestClient(app) as client:
        yield client


def start(client: TestClient, **body: Any) -> str:
    resp = client.post("/api/sessions", json={"time_of_day": "lunch", **body}, headers=HEADERS)
    assert resp.status_code == 201
    return resp.json()["data"]["id"]


def answer_next(client: TestClient, session_id: str, response: bool = True) -> dict:
    resp = client.get(f"/api/sessions/{session_id}/questions/next", headers=HEADERS)
    assert resp.status_code == 200
    question = resp.json()["data"]["question"]
    resp = client.post(
        f"/api/sessions/{session_id}/answers",
        json={"question_id": question["id"], "response": response, "response_time_ms": 900},
        headers=HEADERS,
    )
    assert resp.status_code == 201
    return resp.json()["data"]


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "data": {"status": "ok"}}


def test_create_session(client: TestClient) -> None:
    resp = client.post(
        "/api/sessions",
        json={"time_of_day": "Dinner", "location": {"latitude": 34.7, "longitude": 135.5}},
        headers=HEADERS,
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert data["user_id"] == USER_ID
    assert data["time_of_day"] == "dinner"
    assert data["status"] == "active"
    assert data["location"]["latitude"] == 34.7
    assert data["progress"] == {"current": 0, "total": 10, "percentage": 0}
    assert data["recommendation"] is None


def test_missing_user_header(client: TestClient) -> None:
    resp = client.post("/api/sessions", json={"time_of_day": "lunch"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "unauthorized"


@pytest.mark.parametrize(
    "body",
    ({}, {"time_of_day": "midnight"}, {"time_of_day": "lunch", "location": "大阪"}),
)
def test_create_session_validation(client: TestClient, body: dict) -> None:
    resp = client.post("/api/sessions", json=body, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_body_must_be_json(client: TestClient) -> None:
    resp = client.post("/api/sessions", content=b"lunch", headers=HEADERS)
    assert resp.status_code == 400


def test_unknown_profile(client: TestClient) -> None:
    resp = client.post(
        "/api/sessions", json={"time_of_day": "lunch"}, headers={"X-User-Id": "nobody"}
    )
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


def test_unknown_session(client: TestClient) -> None:
    resp = client.get("/api/sessions/missing", headers=HEADERS)
    assert resp.status_code == 404
    resp = client.get("/api/sessions/missing/questions/next", headers=HEADERS)
    assert resp.status_code == 404


def test_full_session(client: TestClient) -> None:
    session_id = start(client)

    for n in range(1, 10):
        data = answer_next(client, session_id, n % 3 == 0)
        assert data["progress"]["current"] == n
        assert data["session"]["should_offer_recommendation"] is (n >= 3)
        assert data["session"]["can_continue"] is True
        assert data["recommendation"] is None

    data = answer_next(client, session_id)
    assert data["session"]["is_complete"] is True
    assert data["session"]["can_continue"] is False
    assert data["recommendation"]["name"] == "カレーライス"
    assert data["recommendation"]["confidence_score"] == 0.6

    resp = client.get(f"/api/sessions/{session_id}", headers=HEADERS)
    session = resp.json()["data"]
    assert session["status"] == "completed"
    assert session["progress"]["percentage"] == 100
    assert len(session["answers"]) == 10

    resp = client.get(f"/api/sessions/{session_id}/questions/next", headers=HEADERS)
    assert resp.status_code == 409
    assert resp.json()["error"] == "session_exhausted"


def test_pending_question_over_http(client: TestClient) -> None:
    session_id = start(client)
    url = f"/api/sessions/{session_id}/questions/next"
    first = client.get(url, headers=HEADERS).json()["data"]
    again = client.get(url, headers=HEADERS).json()["data"]
    assert first["question"]["id"] == again["question"]["id"]
    assert first["question"]["question_index"] == 1
    assert first["progress"]["current"] == 0


def test_answer_errors(client: TestClient) -> None:
    session_id = start(client)
    url = f"/api/sessions/{session_id}/answers"
    question = client.get(
        f"/api/sessions/{session_id}/questions/next", headers=HEADERS
    ).json()["data"]["question"]

    resp = client.post(url, json={"question_id": question["id"], "response": "yes"}, headers=HEADERS)
    assert resp.status_code == 400

    resp = client.post(url, json={"question_id": "nope", "response": True}, headers=HEADERS)
    assert resp.status_code == 404

    resp = client.post(url, json={"question_id": question["id"], "response": True}, headers=HEADERS)
    assert resp.status_code == 201
    assert resp.json()["data"]["answer"]["question_index"] == 0

    resp = client.post(url, json={"question_id": question["id"], "response": False}, headers=HEADERS)
    assert resp.status_code == 409
    assert resp.json()["error"] == "duplicate_answer"


def test_complete_early_and_react(client: TestClient) -> None:
    session_id = start(client)
    answer_next(client, session_id)
    answer_next(client, session_id)

    resp = client.post(f"/api/sessions/{session_id}/complete", headers=HEADERS)
    assert resp.status_code == 422
    assert resp.json()["error"] == "insufficient_answers"

    answer_next(client, session_id)
    resp = client.post(f"/api/sessions/{session_id}/complete", headers=HEADERS)
    assert resp.status_code == 200
    data = resp.json()["data"]
    recommendation = data["recommendation"]
    assert recommendation["session_id"] == session_id
    assert recommendation["estimated_price"] == 750
    assert data["nutrition"]["estimated_calories"] == 600
    assert 0 <= data["fit"]["fit_score"] <= 1

    resp = client.post(
        f"/api/recommendations/{recommendation['id']}/reaction",
        json={"reaction": "liked"},
        headers=HEADERS,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["user_reaction"] == "liked"

    resp = client.post(
        f"/api/recommendations/{recommendation['id']}/reaction",
        json={"reaction": "love"},
        headers=HEADERS,
    )
    assert resp.status_code == 400

    resp = client.post(
        "/api/recommendations/missing/reaction", json={"reaction": "saved"}, headers=HEADERS
    )
    assert resp.status_code == 404


def test_abandon(client: TestClient) -> None:
    session_id = start(client)
    answer_next(client, session_id)

    resp = client.post(f"/api/sessions/{session_id}/abandon", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "abandoned"

    resp = client.post(f"/api/sessions/{session_id}/abandon", headers=HEADERS)
    assert resp.status_code == 409
    assert resp.json()["error"] == "session_not_active"


def test_model_reply_is_used() -> None:
    llm = FakeCompleter("今日はお肉の気分ですか？")
    app = create_app(
        Config(db_url="memory://"),
        repository=MemoryRepository([make_profile()]),
        llm=llm,
    )
    with TestClient(app) as client:
        session_id = start(client)
        for _ in range(5):
            answer_next(client, session_id)
        resp = client.get(f"/api/sessions/{session_id}/questions/next", headers=HEADERS)
        question = resp.json()["data"]["question"]
        assert question["text"] == "今日はお肉の気分ですか？"
        assert question["is_system_question"] is False
        assert question["question_index"] == 6


def test_non_finite_location_is_rejected(client: TestClient) -> None:
    body = b'{"time_of_day": "lunch", "location": {"latitude": NaN, "longitude": 0}}'
    resp = client.post(
        "/api/sessions",
        content=body,
        headers={**HEADERS, "Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_model_name_comes_from_config() -> None:
    app = create_app(
        Config(db_url="memory://", core_model="gpt-4o-mini"),
        repository=MemoryRepository([make_profile()]),
    )
    assert app.state.generator.llm.model == "gpt-4o-mini"
    assert app.state.recommender.llm is app.state.generator.llm
