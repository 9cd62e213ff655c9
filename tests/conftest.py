import os
import tempfile

# Must be set before convo modules are imported.
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("CONVO_LOG_DIR", os.path.join(tempfile.gettempdir(), "convo-test-logs"))

import pytest

from convo.core.orchestrator import ConversationOrchestrator
from convo.memory.repository import (
    MessageRepository,
    PreferenceRepository,
    ProfileRepository,
    SessionRepository,
    initialize,
)


class FakeInferenceClient:
    """Records every call; replies from a queue, or raises `error` when set."""

    def __init__(self, replies=None, error=None):
        self.replies = list(replies or [])
        self.error = error
        self.calls = []
        self.on_send = None

    def send(self, messages, model):
        self.calls.append({"messages": [dict(m) for m in messages], "model": model})
        if self.on_send is not None:
            self.on_send()
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return f"reply {len(self.calls)}"


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "convo.db"
    initialize(path)
    return str(path)


@pytest.fixture
def inference():
    return FakeInferenceClient()


@pytest.fixture
def make_orchestrator(db_path, inference):
    def _make(owner_id="alice", **overrides):
        kwargs = dict(
            session_store=SessionRepository(db_path, owner_id),
            message_store=MessageRepository(db_path, owner_id),
            inference_client=inference,
            profile_provider=ProfileRepository(db_path, owner_id),
            preferences=PreferenceRepository(db_path, owner_id),
            default_model="gpt-4o",
            owner_id=owner_id,
        )
        kwargs.update(overrides)
        return ConversationOrchestrator(**kwargs)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    orch = make_orchestrator()
    orch.load()
    return orch
