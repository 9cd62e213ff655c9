# convo/core/interfaces.py
#
# Collaborators consumed by the orchestrator. The SQLite repositories and the
# OpenAI client satisfy these structurally; tests pass in-memory fakes.

from typing import Dict, List, Optional, Protocol, Sequence

from convo.memory.models import Message, Session, UserMemory


class MessageStore(Protocol):
    def save(self, session_id: str, role: str, content: str) -> Optional[Message]: ...

    def list(self, session_id: str) -> List[Message]: ...

    def delete(self, message_id: str) -> None: ...


class SessionStore(Protocol):
    def create(self, name: str) -> Optional[Session]: ...

    def list(self) -> List[Session]: ...

    def get(self, session_id: str) -> Optional[Session]: ...


class InferenceClient(Protocol):
    def send(self, messages: Sequence[Dict[str, str]], model: str) -> str: ...


class ProfileProvider(Protocol):
    def snapshot(self) -> UserMemory: ...


class PreferenceStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...
