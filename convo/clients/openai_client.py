# convo/clients/openai_client.py
#
# Single integration layer for the chat-completions API. Callers get either
# the generated text or an InferenceError carrying a human-readable reason;
# nothing is retried here.

import random
import time
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import OpenAI

from convo.config.settings import Settings
from convo.utils.logging import get_logger

logger = get_logger(__name__)

EMPTY_REPLY_TEXT = "No response generated"
_ALLOWED_ROLES = {"system", "user", "assistant"}


class InferenceError(RuntimeError):
    """The model call failed; str(err) is safe to show to the user."""

    def __init__(self, reason: str, code: str = "openai_unknown", status_code: Optional[int] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.code = code
        self.status_code = status_code


# ---------------------------------------------------------------------------
# request_id + error classification for logs
# ---------------------------------------------------------------------------

def _mk_req_id(prefix: str = "req") -> str:
    return f"{prefix}_{int(time.time()*1000)}_{random.randint(1000, 9999)}"


def _classify_openai_error(e: Exception) -> str:
    if isinstance(e, openai.AuthenticationError):
        return "openai_auth"
    if isinstance(e, openai.RateLimitError):
        return "openai_rate_limit"
    if isinstance(e, openai.NotFoundError):
        return "openai_404_not_found"
    if isinstance(e, openai.APITimeoutError):
        return "openai_timeout"
    if isinstance(e, openai.APIConnectionError):
        return "openai_network"
    if isinstance(e, openai.APIStatusError):
        if e.status_code >= 500:
            return f"openai_{e.status_code}"
        return "openai_bad_request"

    msg = (str(e) or "").lower()
    if "timeout" in msg or "timed out" in msg:
        return "openai_timeout"
    if "connection" in msg or "dns" in msg:
        return "openai_network"
    return "openai_unknown"


def _reason_from_status_error(e: "openai.APIStatusError") -> str:
    """
    Prefer the error message from the response body, else a status line.
    """
    body = e.body
    if isinstance(body, dict):
        # The SDK usually unwraps {"error": {...}}, but not for every backend.
        inner = body.get("error") if isinstance(body.get("error"), dict) else body
        message = inner.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()

    response = getattr(e, "response", None)
    reason_phrase = (getattr(response, "reason_phrase", "") or "") if response is not None else ""
    if reason_phrase:
        return f"HTTP {e.status_code}: {reason_phrase}"
    return f"HTTP {e.status_code}"


def _validate_messages(messages: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
    if not isinstance(messages, (list, tuple)) or not messages:
        raise ValueError("messages must be a non-empty list.")
    cleaned: List[Dict[str, str]] = []
    for i, m in enumerate(messages):
        if not isinstance(m, dict) or "role" not in m or "content" not in m:
            raise ValueError(f"invalid message at index {i}: {m!r}")
        if m["role"] not in _ALLOWED_ROLES:
            raise ValueError(f"invalid role at index {i}: {m['role']!r}")
        cleaned.append({"role": m["role"], "content": str(m["content"])})
    return cleaned


class OpenAIChatClient:
    """
    Stateless request/response call to the chat-completions endpoint.
    """

    def __init__(self, settings: Settings, client: Optional[Any] = None) -> None:
        if not settings.openai_api_key:
            raise RuntimeError("OPENAI_API_KEY is not set in settings/.env")
        self.settings = settings
        self._client = client or OpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.openai_timeout_seconds,
            max_retries=0,
        )
        logger.info("OpenAI chat client ready base=%s default_model=%s",
                    settings.openai_base_url, settings.openai_model)

    def send(self, messages: Sequence[Dict[str, str]], model: str) -> str:
        req_id = _mk_req_id("chat")
        model_name = (model or "").strip() or self.settings.openai_model
        payload = _validate_messages(messages)

        logger.info("[chat] req_id=%s start model=%s msg_count=%d", req_id, model_name, len(payload))
        t0 = time.monotonic()
        try:
            resp = self._client.chat.completions.create(
                model=model_name,
                messages=payload,
                temperature=self.settings.openai_temperature,
                max_tokens=self.settings.openai_max_tokens,
            )
        except openai.APIStatusError as e:
            dt_ms = int((time.monotonic() - t0) * 1000)
            code = _classify_openai_error(e)
            reason = _reason_from_status_error(e)
            logger.error("[chat] req_id=%s FAIL status=%d latency_ms=%d model=%s code=%s reason=%s",
                         req_id, e.status_code, dt_ms, model_name, code, reason)
            raise InferenceError(reason, code=code, status_code=e.status_code) from e
        except openai.APIError as e:
            dt_ms = int((time.monotonic() - t0) * 1000)
            code = _classify_openai_error(e)
            reason = (getattr(e, "message", "") or str(e) or "").strip() or "Failed to get AI response"
            logger.error("[chat] req_id=%s FAIL latency_ms=%d model=%s code=%s reason=%s",
                         req_id, dt_ms, model_name, code, reason)
            raise InferenceError(reason, code=code) from e

        dt_ms = int((time.monotonic() - t0) * 1000)
        content = ""
        try:
            content = resp.choices[0].message.content or ""
        except (AttributeError, IndexError, TypeError):
            logger.warning("[chat] req_id=%s response had no choices", req_id)

        content = content.strip() or EMPTY_REPLY_TEXT
        snippet = content[:240] + ("..." if len(content) > 240 else "")
        logger.info("[chat] req_id=%s OK latency_ms=%d model=%s reply=%r", req_id, dt_ms, model_name, snippet)
        return content
