# convo/memory/models.py

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

ISO_FMT = "%Y-%m-%dT%H:%M:%S.%f"

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLES = (ROLE_USER, ROLE_ASSISTANT)

# Assistant replies that carry a failure start with this prefix.
ERROR_PREFIX = "Error: "


def now_iso() -> str:
    return datetime.now(timezone.utc).strftime(ISO_FMT)


@dataclass
class Session:
    id: str
    owner_id: str
    name: str
    last_message: Optional[str]
    message_count: int
    created_at: str
    updated_at: str
    shared: bool = False


@dataclass
class Message:
    id: Optional[str]
    session_id: str
    role: str            # 'user' or 'assistant'
    content: str
    timestamp: str
    provisional: bool = False  # optimistic local entry, not yet confirmed by the store

    @property
    def is_error(self) -> bool:
        return self.role == ROLE_ASSISTANT and self.content.startswith(ERROR_PREFIX)


@dataclass
class UserMemory:
    """Snapshot of the user's profile, used only to build the system prompt."""
    name: str = ""
    location: str = ""
    tone: str = ""
    projects: List[str] = field(default_factory=list)
    facts: List[str] = field(default_factory=list)
    session_context: str = ""
