# convo/main.py
"""
Convo CLI entrypoint.

Default behavior:
- Text in -> ConversationOrchestrator (local SQLite) -> text out

Options:
- --user     : user id owning the sessions (default: "local")
- --db       : SQLite path override (default: CONVO_DB_PATH / settings)
- --api-base : talk to a running convo API server instead of a local database

Commands inside the loop:
  /new            start a new session
  /sessions       list sessions
  /switch N       switch to session number N (as listed)
  /retry          regenerate the last reply
  /detail         regenerate with more detail
  /concise        regenerate more concisely
  /share USER     share the current session with another user
  /model [NAME]   show the available models or change the model
  /export         print a data snapshot
  exit | quit     leave
"""

from __future__ import annotations

import argparse
from dataclasses import asdict
import json
from typing import Any, Dict, List, Optional

from convo.clients.api_client import ConvoAPIClient, ConvoAPIError
from convo.config.settings import SUPPORTED_MODELS, load_settings
from convo.core.modes import RegenerationKind
from convo.core.orchestrator import ConversationOrchestrator, build_orchestrator

REGENERATE_COMMANDS = {
    "/retry": RegenerationKind.TRY_AGAIN,
    "/detail": RegenerationKind.ADD_DETAIL,
    "/concise": RegenerationKind.MORE_CONCISE,
}


class LocalBackend:
    """Same call shapes as ConvoAPIClient, served by an in-process orchestrator."""

    def __init__(self, orchestrator: ConversationOrchestrator) -> None:
        self.orch = orchestrator

    def state(self) -> Dict[str, Any]:
        return {
            "sessions": [asdict(s) for s in self.orch.sessions],
            "active_session_id": self.orch.active_session_id,
            "messages": [asdict(m) for m in self.orch.messages],
            "status": self.orch.status.value,
            "selected_model": self.orch.selected_model,
        }

    def create_session(self) -> Dict[str, Any]:
        self.orch.create_session()
        return self.state()

    def select_session(self, session_id: str) -> Dict[str, Any]:
        self.orch.select_session(session_id)
        return self.state()

    def share_session(self, session_id: str, user_id: str) -> Dict[str, Any]:
        if not self.orch.session_store.share(session_id, user_id):
            raise ConvoAPIError(404, "Session not found or cannot be shared.")
        return {"shared": True, "session_id": session_id, "user_id": user_id.strip()}

    def chat(self, message: str) -> Dict[str, Any]:
        return self._reply(self.orch.submit(message))

    def regenerate(self, kind: str) -> Dict[str, Any]:
        return self._reply(self.orch.regenerate(kind))

    def set_model(self, model: str) -> Dict[str, Any]:
        self.orch.set_selected_model(model)
        return self.state()

    def models(self) -> List[Dict[str, str]]:
        return [{"id": model_id, "description": desc} for model_id, desc in SUPPORTED_MODELS.items()]

    def export(self) -> Dict[str, Any]:
        return self.orch.export_snapshot()

    def _reply(self, reply) -> Dict[str, Any]:
        return {
            "accepted": reply is not None,
            "reply": asdict(reply) if reply is not None else None,
            "state": self.state(),
        }


def _print_sessions(state: Dict[str, Any]) -> None:
    sessions: List[Dict[str, Any]] = state.get("sessions") or []
    if not sessions:
        print("(no sessions)")
        return
    for idx, s in enumerate(sessions, start=1):
        marker = "*" if s["id"] == state.get("active_session_id") else " "
        preview = (s.get("last_message") or "").replace("\n", " ")[:50]
        print(f"{marker} {idx}. {s['name']} ({s['message_count']} msgs) {preview}")


def _print_transcript(state: Dict[str, Any]) -> None:
    for m in state.get("messages") or []:
        who = "You" if m["role"] == "user" else "AI"
        print(f"{who}: {m['content']}")


def _current_session_name(state: Dict[str, Any]) -> str:
    for s in state.get("sessions") or []:
        if s["id"] == state.get("active_session_id"):
            return s["name"]
    return "none"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Convo CLI: chat sessions over a chat-completions model.")
    p.add_argument("--user", default="local", help="User id owning the sessions.")
    p.add_argument("--db", default=None, help="SQLite database path (local mode).")
    p.add_argument("--api-base", default=None, help="Use a running convo API server, e.g. http://127.0.0.1:8000.")
    return p


def _make_backend(args: argparse.Namespace):
    if args.api_base:
        client = ConvoAPIClient(user_id=args.user, api_base=args.api_base)
        client.health()
        return client

    settings = load_settings()
    if args.db:
        settings.db_path = args.db
    orch = build_orchestrator(settings, args.user)
    orch.load()
    return LocalBackend(orch)


def handle_command(backend, line: str) -> Optional[Dict[str, Any]]:
    """
    Run one slash command. Returns the new state when it changed.
    """
    cmd, _, arg = line.partition(" ")
    arg = arg.strip()

    if cmd == "/new":
        state = backend.create_session()
        print(f"[Session: {_current_session_name(state)}]")
        return state

    if cmd == "/sessions":
        _print_sessions(backend.state())
        return None

    if cmd == "/switch":
        sessions = backend.state().get("sessions") or []
        if not arg.isdigit() or not (1 <= int(arg) <= len(sessions)):
            print(f"Usage: /switch N (1-{len(sessions)})")
            return None
        state = backend.select_session(sessions[int(arg) - 1]["id"])
        print(f"[Session: {_current_session_name(state)}]")
        _print_transcript(state)
        return state

    if cmd in REGENERATE_COMMANDS:
        result = backend.regenerate(REGENERATE_COMMANDS[cmd].value)
        if not result["accepted"]:
            print("(nothing to regenerate)")
        else:
            print(f"AI: {result['reply']['content']}\n")
        return result["state"]

    if cmd == "/share":
        state = backend.state()
        if not arg or not state.get("active_session_id"):
            print("Usage: /share USER")
            return None
        try:
            backend.share_session(state["active_session_id"], arg)
        except ConvoAPIError as e:
            print(f"(share failed) {e.detail}")
            return None
        print(f"[Shared {_current_session_name(state)} with {arg}]")
        return None

    if cmd == "/model":
        if not arg:
            state = backend.state()
            print(f"Model: {state['selected_model']}")
            for m in backend.models():
                marker = "*" if m["id"] == state["selected_model"] else " "
                print(f"{marker} {m['id']}: {m['description']}")
            return None
        state = backend.set_model(arg)
        print(f"Model: {state['selected_model']}")
        return state

    if cmd == "/export":
        print(json.dumps(backend.export(), indent=2, ensure_ascii=False))
        return None

    print(f"Unknown command: {cmd}")
    return None


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    backend = _make_backend(args)

    state = backend.state()
    print("Convo (text chat). Type 'exit' to quit, /new for a new session.\n")
    print(f"[Session: {_current_session_name(state)} | model: {state['selected_model']}]\n")
    _print_transcript(state)

    while True:
        try:
            user = input("You: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\n[Session ended]")
            break

        if not user:
            continue
        if user.lower() in {"exit", "quit"}:
            print("Goodbye.")
            break

        try:
            if user.startswith("/"):
                handle_command(backend, user)
                continue
            result = backend.chat(user)
        except ConvoAPIError as e:
            print(f"(error) {e}")
            continue

        if not result["accepted"]:
            print("(message not sent)")
            continue
        print(f"AI: {result['reply']['content']}\n")


if __name__ == "__main__":
    main()
