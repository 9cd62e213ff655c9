import pytest
from fastapi.testclient import TestClient

from convo.api.server import create_app
from convo.clients.openai_client import InferenceError
from convo.config.settings import Settings

from conftest import FakeInferenceClient

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


@pytest.fixture
def fake_client():
    return FakeInferenceClient()


@pytest.fixture
def client(db_path, fake_client):
    app = create_app(Settings(openai_api_key="sk-test", db_path=db_path), inference_client=fake_client)
    return TestClient(app)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_missing_user_header_is_rejected(client):
    resp = client.get("/state")
    assert resp.status_code == 400


def test_first_state_has_one_active_session(client):
    state = client.get("/state", headers=ALICE).json()

    assert [s["name"] for s in state["sessions"]] == ["Session 1"]
    assert state["active_session_id"] == state["sessions"][0]["id"]
    assert state["messages"] == []
    assert state["status"] == "idle"
    assert state["selected_model"] == "gpt-4o"


def test_chat_round_trip(client, fake_client):
    fake_client.replies = ["Hello Ada"]

    body = client.post("/chat", json={"message": "hello"}, headers=ALICE).json()

    assert body["accepted"] is True
    assert body["reply"]["content"] == "Hello Ada"
    assert [(m["role"], m["content"]) for m in body["state"]["messages"]] == [
        ("user", "hello"),
        ("assistant", "Hello Ada"),
    ]
    assert body["state"]["sessions"][0]["message_count"] == 2


def test_blank_chat_is_not_accepted(client, fake_client):
    body = client.post("/chat", json={"message": "   "}, headers=ALICE).json()

    assert body["accepted"] is False
    assert body["reply"] is None
    assert fake_client.calls == []


def test_chat_failure_is_reported_as_error_reply(client, fake_client):
    fake_client.error = InferenceError("Incorrect API key provided")

    body = client.post("/chat", json={"message": "hello"}, headers=ALICE).json()

    assert body["accepted"] is True
    assert body["reply"]["content"] == "Error: Incorrect API key provided"


def test_regenerate(client, fake_client):
    fake_client.replies = ["first", "second"]
    client.post("/chat", json={"message": "hi"}, headers=ALICE)

    body = client.post("/regenerate", json={"kind": "add-detail"}, headers=ALICE).json()

    assert body["accepted"] is True
    assert [m["content"] for m in body["state"]["messages"]] == ["hi", "second"]
    assert fake_client.calls[-1]["messages"][1]["content"].endswith(
        "(Please provide a more detailed and comprehensive response)"
    )


def test_regenerate_rejects_unknown_kind(client):
    resp = client.post("/regenerate", json={"kind": "shout"}, headers=ALICE)
    assert resp.status_code == 400


def test_sessions_create_and_select(client):
    first = client.get("/state", headers=ALICE).json()["active_session_id"]
    client.post("/chat", json={"message": "in first"}, headers=ALICE)

    created = client.post("/sessions", headers=ALICE).json()
    assert created["sessions"][0]["name"] == "Session 2"
    assert created["messages"] == []

    selected = client.post(f"/sessions/{first}/select", headers=ALICE).json()
    assert selected["active_session_id"] == first
    assert selected["messages"][0]["content"] == "in first"

    assert client.post("/sessions/unknown/select", headers=ALICE).status_code == 404


def test_users_are_isolated(client):
    client.post("/chat", json={"message": "secret"}, headers=ALICE)

    bob_state = client.get("/state", headers=BOB).json()

    assert bob_state["messages"] == []
    assert [s["owner_id"] for s in bob_state["sessions"]] == ["bob"]


def test_share_session(client):
    session_id = client.get("/state", headers=ALICE).json()["active_session_id"]
    client.post("/chat", json={"message": "shared hello"}, headers=ALICE)
    client.get("/state", headers=BOB)

    resp = client.post(f"/sessions/{session_id}/share", json={"user_id": "bob"}, headers=ALICE)
    assert resp.status_code == 200

    bob_state = client.post("/state/reload", headers=BOB).json()
    assert "Shared: Session 1" in [s["name"] for s in bob_state["sessions"]]

    assert client.post(f"/sessions/{session_id}/share", json={"user_id": "carol"}, headers=BOB).status_code == 404


def test_profile_feeds_system_prompt(client, fake_client):
    resp = client.put("/profile", json={"name": "Ada", "facts": ["likes tea"]}, headers=ALICE)
    assert resp.json()["name"] == "Ada"
    assert client.get("/profile", headers=ALICE).json()["facts"] == ["likes tea"]

    client.post("/chat", json={"message": "hello"}, headers=ALICE)

    system_prompt = fake_client.calls[-1]["messages"][0]["content"]
    assert "support Ada" in system_prompt
    assert "Known facts:\nlikes tea" in system_prompt


def test_model_selection(client, fake_client):
    assert {"id": "gpt-4o-mini", "description": "Fast and efficient"} in client.get("/models").json()

    state = client.put("/model", json={"model": "gpt-4o-mini"}, headers=ALICE).json()
    assert state["selected_model"] == "gpt-4o-mini"

    client.post("/chat", json={"message": "hello"}, headers=ALICE)
    assert fake_client.calls[-1]["model"] == "gpt-4o-mini"


def test_export(client):
    client.post("/chat", json={"message": "one"}, headers=ALICE)
    client.post("/sessions", headers=ALICE)
    client.post("/chat", json={"message": "two"}, headers=ALICE)

    snapshot = client.get("/export", headers=ALICE).json()

    assert snapshot["owner_id"] == "alice"
    assert snapshot["total_messages"] == 4
    assert len(snapshot["sessions"]) == 2
