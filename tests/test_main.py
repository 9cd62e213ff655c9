import pytest

from convo.main import LocalBackend, build_parser, handle_command
from convo.memory.repository import SessionRepository


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.user == "local"
    assert args.api_base is None


def test_new_switch_and_sessions(orchestrator, capsys):
    backend = LocalBackend(orchestrator)
    backend.chat("hello")

    handle_command(backend, "/new")
    assert "[Session: Session 2]" in capsys.readouterr().out

    state = handle_command(backend, "/switch 2")
    out = capsys.readouterr().out
    assert "[Session: Session 1]" in out
    assert "You: hello" in out
    assert state["active_session_id"] == orchestrator.active_session_id

    handle_command(backend, "/sessions")
    listing = capsys.readouterr().out
    assert "  1. Session 2 (0 msgs)" in listing
    assert "* 2. Session 1 (2 msgs) reply 1" in listing


def test_switch_rejects_bad_index(orchestrator, capsys):
    handle_command(LocalBackend(orchestrator), "/switch 9")
    assert "Usage: /switch N" in capsys.readouterr().out


def test_regenerate_commands(orchestrator, inference, capsys):
    backend = LocalBackend(orchestrator)

    handle_command(backend, "/retry")
    assert "(nothing to regenerate)" in capsys.readouterr().out

    backend.chat("hi")
    handle_command(backend, "/concise")

    assert "AI: reply 2" in capsys.readouterr().out
    assert inference.calls[-1]["messages"][1]["content"].endswith("succinct response)")


def test_model_command(orchestrator, capsys):
    backend = LocalBackend(orchestrator)

    handle_command(backend, "/model gpt-4o-mini")
    assert "Model: gpt-4o-mini" in capsys.readouterr().out
    assert orchestrator.selected_model == "gpt-4o-mini"


def test_model_command_lists_catalog(orchestrator, capsys):
    handle_command(LocalBackend(orchestrator), "/model")

    out = capsys.readouterr().out
    assert "Model: gpt-4o\n" in out
    assert "* gpt-4o: Most capable model" in out
    assert "  gpt-4o-mini: Fast and efficient" in out


def test_share_command(orchestrator, db_path, capsys):
    backend = LocalBackend(orchestrator)
    backend.chat("hello")

    handle_command(backend, "/share bob")

    assert "[Shared Session 1 with bob]" in capsys.readouterr().out
    shared = SessionRepository(db_path, "bob").list()
    assert [s.id for s in shared] == [orchestrator.active_session_id]


@pytest.mark.parametrize("line, expected", [
    ("/share", "Usage: /share USER"),
    ("/share alice", "(share failed) Session not found or cannot be shared."),
])
def test_share_command_rejections(orchestrator, capsys, line, expected):
    handle_command(LocalBackend(orchestrator), line)
    assert expected in capsys.readouterr().out


def test_export_command(orchestrator, capsys):
    backend = LocalBackend(orchestrator)
    backend.chat("hello")

    handle_command(backend, "/export")

    assert '"total_messages": 2' in capsys.readouterr().out
