from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from convo.core.modes import RegenerationKind
from convo.memory.models import Message, Session


class Status(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    REGENERATING = "regenerating"


@dataclass
class OrchestratorState:
    selected_model: str
    sessions: List[Session] = field(default_factory=list)   # most recently updated first
    active_session_id: Optional[str] = None
    messages: List[Message] = field(default_factory=list)   # active session only
    status: Status = Status.IDLE
    regeneration_kind: Optional[RegenerationKind] = None    # set only while regenerating
