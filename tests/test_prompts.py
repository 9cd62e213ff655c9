from convo.core.modes import RegenerationKind, build_regeneration_prompt, parse_kind
from convo.core.prompts import DEFAULT_USER_NAME, DEFINITION_PARAGRAPH, compose_system_prompt
from convo.memory.models import UserMemory


def test_full_profile_renders_every_section_once():
    memory = UserMemory(
        name="Ada",
        projects=["x", "y"],
        tone="casual",
        facts=["f1"],
        session_context="c",
    )
    prompt = compose_system_prompt(memory)

    assert prompt.count("Ada") == 1
    assert prompt.count("through projects like x, y.") == 1
    assert prompt.count("Tone: casual.") == 1
    assert prompt.count("Known facts:\nf1") == 1
    assert prompt.count("Session context: c") == 1
    assert DEFINITION_PARAGRAPH in prompt


def test_sections_appear_in_order():
    memory = UserMemory(name="Ada", projects=["x"], tone="warm", facts=["a", "b"], session_context="ctx")
    prompt = compose_system_prompt(memory)

    positions = [
        prompt.index("Ada"),
        prompt.index(DEFINITION_PARAGRAPH),
        prompt.index("Tone: warm."),
        prompt.index("Known facts:\na\nb"),
        prompt.index("Session context: ctx"),
    ]
    assert positions == sorted(positions)


def test_empty_profile_uses_placeholder_and_skips_optional_sections():
    prompt = compose_system_prompt(UserMemory())

    assert f"support {DEFAULT_USER_NAME} in evolving" in prompt
    assert DEFINITION_PARAGRAPH in prompt
    assert "through projects like" not in prompt
    assert "Tone:" not in prompt
    assert "Known facts:" not in prompt
    assert "Session context:" not in prompt
    assert prompt.endswith(DEFINITION_PARAGRAPH)


def test_compose_is_deterministic():
    memory = UserMemory(name="Ada", facts=["one", "two"])
    assert compose_system_prompt(memory) == compose_system_prompt(memory)


def test_regeneration_prompt_appends_instruction():
    text = build_regeneration_prompt("hi", RegenerationKind.MORE_CONCISE)
    assert text == "hi\n\n(Please provide a more concise and succinct response)"


def test_parse_kind_accepts_values_and_rejects_unknown():
    assert parse_kind("try-again") is RegenerationKind.TRY_AGAIN
    assert parse_kind(" Add-Detail ") is RegenerationKind.ADD_DETAIL
    assert parse_kind(RegenerationKind.MORE_CONCISE) is RegenerationKind.MORE_CONCISE
    assert parse_kind("shorter") is None
    assert parse_kind(None) is None
