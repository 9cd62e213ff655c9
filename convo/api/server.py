# convo/api/server.py
"""
FastAPI server exposing the conversation orchestrator:

- /state, /state/reload     : sessions, active session, messages, status
- /sessions/*               : create, select, share
- /chat, /regenerate        : send a message, regenerate the latest reply
- /model, /models           : selected model and the offered catalog
- /profile                  : the profile used to build the system prompt
- /export                   : data snapshot
- /health                   : basic health check

The caller is identified by the X-User-Id header; each user gets one
orchestrator, created and loaded on first use.

Run with:  uvicorn convo.api.server:create_app --factory
"""

from dataclasses import asdict
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field

from convo.clients.openai_client import OpenAIChatClient
from convo.config.settings import SUPPORTED_MODELS, Settings, load_settings
from convo.core.interfaces import InferenceClient
from convo.core.modes import parse_kind
from convo.core.orchestrator import ConversationOrchestrator, build_orchestrator
from convo.memory.models import Message, Session
from convo.memory.repository import ProfileRepository, SessionRepository, initialize
from convo.utils.logging import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class SessionOut(BaseModel):
    id: str
    owner_id: str
    name: str
    last_message: Optional[str] = None
    message_count: int
    created_at: str
    updated_at: str
    shared: bool = False


class MessageOut(BaseModel):
    id: Optional[str] = None
    session_id: str
    role: str
    content: str
    timestamp: str
    provisional: bool = False


class StateResponse(BaseModel):
    sessions: List[SessionOut]
    active_session_id: Optional[str] = None
    messages: List[MessageOut]
    status: str
    regeneration_kind: Optional[str] = None
    selected_model: str


class ChatRequest(BaseModel):
    message: str = Field(..., description="User message in plain text.")


class RegenerateRequest(BaseModel):
    kind: str = Field(..., description="One of 'try-again', 'add-detail', 'more-concise'.")


class ReplyResponse(BaseModel):
    """
    accepted : False when the orchestrator ignored the request (busy, blank
               input, no active session, nothing to regenerate, store failure)
    reply    : the new assistant message; its content starts with "Error: "
               when the model call failed
    """
    accepted: bool
    reply: Optional[MessageOut] = None
    state: StateResponse


class ModelRequest(BaseModel):
    model: str = Field(..., min_length=1)


class ShareRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class ProfileModel(BaseModel):
    name: Optional[str] = None
    location: Optional[str] = None
    tone: Optional[str] = None
    projects: Optional[List[str]] = None
    facts: Optional[List[str]] = None
    context: Optional[str] = None


# ---------------------------------------------------------------------------
# Per-user orchestrators
# ---------------------------------------------------------------------------

class OrchestratorRegistry:
    def __init__(self, factory: Callable[[str], ConversationOrchestrator]) -> None:
        self._factory = factory
        self._items: Dict[str, ConversationOrchestrator] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> ConversationOrchestrator:
        with self._lock:
            orch = self._items.get(user_id)
            if orch is None:
                orch = self._factory(user_id)
                orch.load()
                self._items[user_id] = orch
                logger.info("Orchestrator created for user=%s", user_id)
            return orch


def _session_out(s: Session) -> SessionOut:
    return SessionOut(**asdict(s))


def _message_out(m: Message) -> MessageOut:
    return MessageOut(**asdict(m))


def _state_out(orch: ConversationOrchestrator) -> StateResponse:
    kind = orch.regeneration_kind
    return StateResponse(
        sessions=[_session_out(s) for s in orch.sessions],
        active_session_id=orch.active_session_id,
        messages=[_message_out(m) for m in orch.messages],
        status=orch.status.value,
        regeneration_kind=kind.value if kind is not None else None,
        selected_model=orch.selected_model,
    )


def _user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="Missing X-User-Id header.")
    return user_id


def create_app(
    settings: Optional[Settings] = None,
    inference_client: Optional[InferenceClient] = None,
) -> FastAPI:
    settings = settings or load_settings()
    initialize(settings.db_path)
    client = inference_client or OpenAIChatClient(settings)

    app = FastAPI(
        title="Convo API",
        description="Session and message orchestration over a chat-completions model.",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.registry = OrchestratorRegistry(
        lambda user_id: build_orchestrator(settings, user_id, inference_client=client)
    )

    def orchestrator_for(request: Request, user_id: str = Depends(_user_id)) -> ConversationOrchestrator:
        return request.app.state.registry.get(user_id)

    # -----------------------------------------------------------------------
    # State + sessions
    # -----------------------------------------------------------------------

    @app.get("/health")
    def health_check() -> dict:
        return {"status": "ok"}

    @app.get("/state", response_model=StateResponse)
    def get_state(orch: ConversationOrchestrator = Depends(orchestrator_for)) -> StateResponse:
        return _state_out(orch)

    @app.post("/state/reload", response_model=StateResponse)
    def reload_state(orch: ConversationOrchestrator = Depends(orchestrator_for)) -> StateResponse:
        """
        Re-run the initial load, e.g. after another user shared a session.
        """
        orch.load()
        return _state_out(orch)

    @app.post("/sessions", response_model=StateResponse)
    def create_session(orch: ConversationOrchestrator = Depends(orchestrator_for)) -> StateResponse:
        if orch.create_session() is None:
            raise HTTPException(status_code=409, detail="Session could not be created.")
        return _state_out(orch)

    @app.post("/sessions/{session_id}/select", response_model=StateResponse)
    def select_session(session_id: str, orch: ConversationOrchestrator = Depends(orchestrator_for)) -> StateResponse:
        if not orch.select_session(session_id):
            if orch.is_busy:
                raise HTTPException(status_code=409, detail="A reply is still being generated.")
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        return _state_out(orch)

    @app.post("/sessions/{session_id}/share")
    def share_session(session_id: str, req: ShareRequest, user_id: str = Depends(_user_id)) -> dict:
        repo = SessionRepository(settings.db_path, user_id)
        if not repo.share(session_id, req.user_id):
            raise HTTPException(status_code=404, detail="Session not found or cannot be shared.")
        return {"shared": True, "session_id": session_id, "user_id": req.user_id.strip()}

    # -----------------------------------------------------------------------
    # Chat
    # -----------------------------------------------------------------------

    @app.post("/chat", response_model=ReplyResponse)
    def chat(req: ChatRequest, orch: ConversationOrchestrator = Depends(orchestrator_for)) -> ReplyResponse:
        request_id = str(uuid.uuid4())
        start_time = time.monotonic()
        logger.info("[chat] request_id=%s session=%s message_len=%d",
                    request_id, orch.active_session_id, len(req.message))

        try:
            reply = orch.submit(req.message)
        except Exception as e:
            logger.error("[chat] Unexpected error request_id=%s error=%s", request_id, e)
            raise HTTPException(status_code=500, detail="Unexpected error in chat.")

        latency_ms = int((time.monotonic() - start_time) * 1000)
        logger.info("[chat] request_id=%s accepted=%s latency_ms=%d", request_id, reply is not None, latency_ms)
        return ReplyResponse(
            accepted=reply is not None,
            reply=_message_out(reply) if reply is not None else None,
            state=_state_out(orch),
        )

    @app.post("/regenerate", response_model=ReplyResponse)
    def regenerate(req: RegenerateRequest, orch: ConversationOrchestrator = Depends(orchestrator_for)) -> ReplyResponse:
        kind = parse_kind(req.kind)
        if kind is None:
            raise HTTPException(status_code=400, detail=f"Unknown regeneration kind: {req.kind!r}")

        request_id = str(uuid.uuid4())
        start_time = time.monotonic()
        try:
            reply = orch.regenerate(kind)
        except Exception as e:
            logger.error("[regenerate] Unexpected error request_id=%s error=%s", request_id, e)
            raise HTTPException(status_code=500, detail="Unexpected error in regenerate.")

        latency_ms = int((time.monotonic() - start_time) * 1000)
        logger.info("[regenerate] request_id=%s kind=%s accepted=%s latency_ms=%d",
                    request_id, kind.value, reply is not None, latency_ms)
        return ReplyResponse(
            accepted=reply is not None,
            reply=_message_out(reply) if reply is not None else None,
            state=_state_out(orch),
        )

    # -----------------------------------------------------------------------
    # Model, profile, export
    # -----------------------------------------------------------------------

    @app.get("/models")
    def list_models() -> List[Dict[str, str]]:
        return [{"id": model_id, "description": desc} for model_id, desc in SUPPORTED_MODELS.items()]

    @app.put("/model", response_model=StateResponse)
    def set_model(req: ModelRequest, orch: ConversationOrchestrator = Depends(orchestrator_for)) -> StateResponse:
        orch.set_selected_model(req.model)
        return _state_out(orch)

    @app.get("/profile", response_model=ProfileModel)
    def get_profile(user_id: str = Depends(_user_id)) -> ProfileModel:
        return ProfileModel(**ProfileRepository(settings.db_path, user_id).get())

    @app.put("/profile", response_model=ProfileModel)
    def update_profile(req: ProfileModel, user_id: str = Depends(_user_id)) -> ProfileModel:
        fields = {k: v for k, v in req.dict().items() if v is not None}
        return ProfileModel(**ProfileRepository(settings.db_path, user_id).update(**fields))

    @app.get("/export")
    def export_data(orch: ConversationOrchestrator = Depends(orchestrator_for)) -> Dict[str, Any]:
        return orch.export_snapshot()

    return app
