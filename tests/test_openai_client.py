from types import SimpleNamespace

import httpx
import openai
import pytest

from convo.clients.openai_client import EMPTY_REPLY_TEXT, InferenceError, OpenAIChatClient
from convo.config.settings import Settings

URL = "https://api.openai.com/v1/chat/completions"


class FakeCompletions:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.result


def _client(result=None, error=None, **settings_overrides):
    completions = FakeCompletions(result=result, error=error)
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    settings = Settings(openai_api_key="sk-test", **settings_overrides)
    return OpenAIChatClient(settings, client=fake), completions


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _status_error(cls, status, body):
    response = httpx.Response(status, request=httpx.Request("POST", URL))
    return cls(f"Error code: {status}", response=response, body=body)


MESSAGES = [{"role": "system", "content": "be nice"}, {"role": "user", "content": "hi"}]


def test_send_returns_reply_and_passes_settings():
    client, completions = _client(_completion("  hello!  "), openai_temperature=0.2, openai_max_tokens=50)

    assert client.send(MESSAGES, "gpt-4o-mini") == "hello!"
    assert completions.kwargs == {
        "model": "gpt-4o-mini",
        "messages": MESSAGES,
        "temperature": 0.2,
        "max_tokens": 50,
    }


def test_blank_model_falls_back_to_settings():
    client, completions = _client(_completion("ok"), openai_model="gpt-4-turbo")

    client.send(MESSAGES, " ")

    assert completions.kwargs["model"] == "gpt-4-turbo"


@pytest.mark.parametrize("result", [_completion(None), _completion("   "), SimpleNamespace(choices=[])])
def test_empty_reply_uses_placeholder(result):
    client, _ = _client(result)
    assert client.send(MESSAGES, "gpt-4o") == EMPTY_REPLY_TEXT


def test_status_error_uses_body_message():
    error = _status_error(openai.RateLimitError, 429, {"message": "Rate limit reached for gpt-4o", "type": "requests"})
    client, _ = _client(error=error)

    with pytest.raises(InferenceError) as exc_info:
        client.send(MESSAGES, "gpt-4o")

    assert str(exc_info.value) == "Rate limit reached for gpt-4o"
    assert exc_info.value.code == "openai_rate_limit"
    assert exc_info.value.status_code == 429


def test_status_error_with_wrapped_body():
    error = _status_error(openai.AuthenticationError, 401, {"error": {"message": "Incorrect API key provided"}})
    client, _ = _client(error=error)

    with pytest.raises(InferenceError, match="Incorrect API key provided") as exc_info:
        client.send(MESSAGES, "gpt-4o")
    assert exc_info.value.code == "openai_auth"


def test_status_error_without_body_uses_status_line():
    error = _status_error(openai.InternalServerError, 500, None)
    client, _ = _client(error=error)

    with pytest.raises(InferenceError) as exc_info:
        client.send(MESSAGES, "gpt-4o")

    assert str(exc_info.value) == "HTTP 500: Internal Server Error"
    assert exc_info.value.code == "openai_500"


def test_connection_and_timeout_errors_are_readable():
    request = httpx.Request("POST", URL)

    client, _ = _client(error=openai.APIConnectionError(request=request))
    with pytest.raises(InferenceError, match="Connection error") as exc_info:
        client.send(MESSAGES, "gpt-4o")
    assert exc_info.value.code == "openai_network"

    client, _ = _client(error=openai.APITimeoutError(request=request))
    with pytest.raises(InferenceError, match="timed out") as exc_info:
        client.send(MESSAGES, "gpt-4o")
    assert exc_info.value.code == "openai_timeout"


def test_invalid_messages_are_rejected():
    client, _ = _client(_completion("ok"))

    with pytest.raises(ValueError):
        client.send([], "gpt-4o")
    with pytest.raises(ValueError):
        client.send([{"role": "tool", "content": "x"}], "gpt-4o")
    with pytest.raises(ValueError):
        client.send([{"content": "x"}], "gpt-4o")


def test_missing_api_key_is_rejected():
    with pytest.raises(RuntimeError):
        OpenAIChatClient(Settings(openai_api_key=""), client=object())
