# convo/core/orchestrator.py

from dataclasses import asdict, replace
import threading
import time
from typing import Any, Dict, List, Optional, Union

from convo.clients.openai_client import OpenAIChatClient
from convo.config.settings import DEFAULT_MODEL, Settings
from convo.core.interfaces import (
    InferenceClient,
    MessageStore,
    PreferenceStore,
    ProfileProvider,
    SessionStore,
)
from convo.core.modes import RegenerationKind, build_regeneration_prompt, parse_kind
from convo.core.prompts import compose_system_prompt
from convo.core.state import OrchestratorState, Status
from convo.memory.models import (
    ERROR_PREFIX,
    ROLE_ASSISTANT,
    ROLE_USER,
    Message,
    Session,
    UserMemory,
    now_iso,
)
from convo.memory.repository import (
    MessageRepository,
    PreferenceRepository,
    ProfileRepository,
    SessionRepository,
    initialize,
)
from convo.utils.logging import get_logger

logger = get_logger(__name__)

PREF_ACTIVE_SESSION = "active_session"
PREF_SELECTED_MODEL = "selected_model"

GENERIC_FAILURE_REASON = "Failed to get AI response"


class ConversationOrchestrator:
    """
    Sequences persistence and inference calls for one user.

    Owns the in-memory session list, the active session and its messages, and
    the idle/sending/regenerating status. At most one sending or regenerating
    operation runs at a time; calls made while busy (including re-entrant calls
    from a collaborator) are ignored.
    """

    def __init__(
        self,
        session_store: SessionStore,
        message_store: MessageStore,
        inference_client: InferenceClient,
        profile_provider: ProfileProvider,
        preferences: Optional[PreferenceStore] = None,
        default_model: str = DEFAULT_MODEL,
        owner_id: Optional[str] = None,
    ) -> None:
        self.session_store = session_store
        self.message_store = message_store
        self.inference_client = inference_client
        self.profile_provider = profile_provider
        self.preferences = preferences
        self.owner_id = owner_id

        self._lock = threading.Lock()
        self.state = OrchestratorState(selected_model=default_model or DEFAULT_MODEL)

    # ---------- READ-ONLY STATE ----------

    @property
    def sessions(self) -> List[Session]:
        return list(self.state.sessions)

    @property
    def active_session_id(self) -> Optional[str]:
        return self.state.active_session_id

    @property
    def messages(self) -> List[Message]:
        return list(self.state.messages)

    @property
    def status(self) -> Status:
        return self.state.status

    @property
    def regeneration_kind(self) -> Optional[RegenerationKind]:
        return self.state.regeneration_kind

    @property
    def selected_model(self) -> str:
        return self.state.selected_model

    @property
    def is_busy(self) -> bool:
        return self.state.status is not Status.IDLE

    # ---------- STATUS GUARD ----------

    def _begin(self, status: Status, kind: Optional[RegenerationKind] = None) -> bool:
        with self._lock:
            if self.state.status is not Status.IDLE:
                logger.info("Ignoring %s request: orchestrator is %s.", status.value, self.state.status.value)
                return False
            self.state.status = status
            self.state.regeneration_kind = kind
            return True

    def _finish(self) -> None:
        with self._lock:
            self.state.status = Status.IDLE
            self.state.regeneration_kind = None

    def _is_idle(self, operation: str) -> bool:
        with self._lock:
            if self.state.status is Status.IDLE:
                return True
        logger.info("Ignoring %s: orchestrator is %s.", operation, self.state.status.value)
        return False

    # ---------- PREFERENCES ----------

    def _remember(self, key: str, value: str) -> None:
        if self.preferences is None:
            return
        try:
            self.preferences.set(key, value)
        except Exception as e:
            logger.error("Failed to remember preference %s: %s", key, e)

    def _recall(self, key: str) -> Optional[str]:
        if self.preferences is None:
            return None
        try:
            return self.preferences.get(key)
        except Exception as e:
            logger.error("Failed to read preference %s: %s", key, e)
            return None

    # ---------- SESSION LIFECYCLE ----------

    def load(self) -> None:
        """
        Initial load once the user is known.

        Restores the remembered session if it still exists, otherwise creates a
        first session for a user with none, otherwise activates the most
        recently updated one.
        """
        if not self._is_idle("load"):
            return

        try:
            sessions = self.session_store.list()
        except Exception as e:
            logger.error("Error loading sessions: %s", e)
            return
        self.state.sessions = list(sessions)

        saved_model = (self._recall(PREF_SELECTED_MODEL) or "").strip()
        if saved_model:
            self.state.selected_model = saved_model

        remembered = self._recall(PREF_ACTIVE_SESSION)
        if remembered and self._find_session(remembered) is not None:
            self._activate(remembered)
        elif not self.state.sessions:
            self.create_session()
        else:
            self._activate(self.state.sessions[0].id)

        logger.info("Loaded %d sessions; active=%s model=%s",
                    len(self.state.sessions), self.state.active_session_id, self.state.selected_model)

    def reset(self) -> None:
        """The user signed out: forget everything held in memory."""
        self.state.sessions = []
        self.state.active_session_id = None
        self.state.messages = []

    def create_session(self) -> Optional[Session]:
        if not self._is_idle("create_session"):
            return None

        name = f"Session {len(self.state.sessions) + 1}"
        try:
            session = self.session_store.create(name)
        except Exception as e:
            logger.error("Error creating session %r: %s", name, e)
            session = None

        if session is None:
            logger.error("Session store did not return a session for %r; state unchanged.", name)
            return None

        self.state.sessions.insert(0, session)
        self.state.active_session_id = session.id
        self.state.messages = []
        self._remember(PREF_ACTIVE_SESSION, session.id)
        return session

    def select_session(self, session_id: str) -> bool:
        if not self._is_idle("select_session"):
            return False
        if self._find_session(session_id) is None:
            logger.info("Ignoring select_session for unknown session id=%s", session_id)
            return False
        self._activate(session_id)
        return True

    def _activate(self, session_id: str) -> None:
        self.state.active_session_id = session_id
        self._remember(PREF_ACTIVE_SESSION, session_id)
        try:
            self.state.messages = list(self.message_store.list(session_id))
        except Exception as e:
            # Never show another session's messages under this id.
            logger.error("Error loading messages for session=%s: %s", session_id, e)
            self.state.messages = []

    def _find_session(self, session_id: Optional[str]) -> Optional[Session]:
        for session in self.state.sessions:
            if session.id == session_id:
                return session
        return None

    def _refresh_session(self, session_id: str) -> None:
        """
        Single place where session summary fields change: take the store's
        record, or recompute from the loaded messages if the store is unavailable.
        """
        try:
            refreshed = self.session_store.get(session_id)
        except Exception as e:
            logger.error("Error refreshing session=%s: %s", session_id, e)
            refreshed = None

        current = self._find_session(session_id)
        if refreshed is None:
            if current is None or session_id != self.state.active_session_id:
                return
            confirmed = [m for m in self.state.messages if not m.provisional]
            refreshed = replace(
                current,
                message_count=len(confirmed),
                last_message=confirmed[-1].content if confirmed else None,
                updated_at=now_iso(),
            )

        others = [s for s in self.state.sessions if s.id != session_id]
        self.state.sessions = [refreshed] + others

    # ---------- MESSAGES ----------

    def _commit_message(self, session_id: str, role: str, content: str) -> Optional[Message]:
        """
        Two-phase append: show a provisional entry, then swap in the stored
        record, or drop the entry if the store did not accept it.
        """
        provisional = Message(
            id=None,
            session_id=session_id,
            role=role,
            content=content,
            timestamp=now_iso(),
            provisional=True,
        )
        self.state.messages.append(provisional)

        try:
            saved = self.message_store.save(session_id, role, content)
        except Exception as e:
            logger.error("Error saving %s message in session=%s: %s", role, session_id, e)
            saved = None

        if saved is None:
            self.state.messages = [m for m in self.state.messages if m is not provisional]
            logger.error("Failed to persist %s message in session=%s; discarded.", role, session_id)
            return None

        self.state.messages = [saved if m is provisional else m for m in self.state.messages]
        self._refresh_session(session_id)
        return saved

    def _profile_snapshot(self) -> UserMemory:
        try:
            return self.profile_provider.snapshot()
        except Exception as e:
            logger.error("Failed to read profile snapshot; using an empty one: %s", e)
            return UserMemory()

    def _request_reply(self, session_id: str, prompt_text: str) -> Optional[Message]:
        system_prompt = compose_system_prompt(self._profile_snapshot())
        api_messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt_text},
        ]
        model = self.state.selected_model

        t0 = time.monotonic()
        try:
            reply = self.inference_client.send(api_messages, model)
        except Exception as e:
            reason = str(e).strip() or GENERIC_FAILURE_REASON
            logger.warning("Inference failed session=%s model=%s: %s", session_id, model, reason)
            reply = f"{ERROR_PREFIX}{reason}"
        else:
            logger.info("Inference OK session=%s model=%s latency_ms=%d reply_len=%d",
                        session_id, model, int((time.monotonic() - t0) * 1000), len(reply or ""))

        return self._commit_message(session_id, ROLE_ASSISTANT, reply or "")

    def submit(self, content: str) -> Optional[Message]:
        """
        Persist the user's text, ask the model, and persist the reply.

        Returns the assistant message (which may be an "Error: ..." reply), or
        None when the call was ignored or the user message could not be stored.
        """
        text = (content or "").strip()
        session_id = self.state.active_session_id
        if not text or not session_id:
            return None
        if not self._begin(Status.SENDING):
            return None

        try:
            if self._commit_message(session_id, ROLE_USER, text) is None:
                return None
            return self._request_reply(session_id, text)
        finally:
            self._finish()

    def regenerate(self, kind: Union[RegenerationKind, str]) -> Optional[Message]:
        """
        Replace the latest assistant reply.

        The reply is deleted from the store, and a new one is requested with an
        instruction appended to the user's text. The instruction is never stored.
        """
        parsed = parse_kind(kind)
        if parsed is None:
            logger.info("Ignoring regenerate with unknown kind %r", kind)
            return None
        session_id = self.state.active_session_id
        if not session_id:
            return None
        if not self._begin(Status.REGENERATING, parsed):
            return None

        try:
            basis_idx = self._last_index(ROLE_USER)
            if basis_idx is None:
                return None
            basis = self.state.messages[basis_idx]

            reply_idx = self._last_index(ROLE_ASSISTANT)
            if reply_idx is not None:
                previous = self.state.messages[reply_idx]
                try:
                    self.message_store.delete(previous.id)
                except Exception as e:
                    logger.error("Failed to delete message=%s before regenerating: %s", previous.id, e)
                    return None
                self.state.messages = [m for m in self.state.messages if m is not previous]
                self._refresh_session(session_id)

            return self._request_reply(session_id, build_regeneration_prompt(basis.content, parsed))
        finally:
            self._finish()

    def _last_index(self, role: str) -> Optional[int]:
        for idx in range(len(self.state.messages) - 1, -1, -1):
            msg = self.state.messages[idx]
            if msg.role == role and not msg.provisional:
                return idx
        return None

    # ---------- SETTINGS / EXPORT ----------

    def set_selected_model(self, model: str) -> None:
        cleaned = (model or "").strip()
        if not cleaned:
            return
        self.state.selected_model = cleaned
        self._remember(PREF_SELECTED_MODEL, cleaned)

    def export_snapshot(self) -> Dict[str, Any]:
        sessions = self.sessions
        return {
            "owner_id": self.owner_id,
            "sessions": [asdict(s) for s in sessions],
            "profile": asdict(self._profile_snapshot()),
            "total_messages": sum(s.message_count for s in sessions),
        }


def build_orchestrator(
    settings: Settings,
    owner_id: str,
    inference_client: Optional[InferenceClient] = None,
) -> ConversationOrchestrator:
    """
    Wire an orchestrator for one user against the SQLite stores.
    """
    initialize(settings.db_path)
    return ConversationOrchestrator(
        session_store=SessionRepository(settings.db_path, owner_id),
        message_store=MessageRepository(settings.db_path, owner_id),
        inference_client=inference_client or OpenAIChatClient(settings),
        profile_provider=ProfileRepository(settings.db_path, owner_id),
        preferences=PreferenceRepository(settings.db_path, owner_id),
        default_model=settings.openai_model,
        owner_id=owner_id,
    )
