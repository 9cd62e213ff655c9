# convo/clients/api_client.py
#
# Thin HTTP client for a running convo API server (see convo/api/server.py).

from typing import Any, Dict, List, Optional

import requests

from convo.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_API_BASE = "http://127.0.0.1:8000"


class ConvoAPIError(RuntimeError):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class ConvoAPIClient:
    def __init__(
        self,
        user_id: str,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 120.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not (user_id or "").strip():
            raise ValueError("user_id must not be empty")
        self.api_base = (api_base or DEFAULT_API_BASE).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": "convo/cli (requests)",
            "X-User-Id": user_id.strip(),
        })

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.api_base}{path}"
        try:
            resp = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("[api] %s %s failed: %s", method, url, e)
            raise ConvoAPIError(0, f"Could not reach {self.api_base}: {e}") from e

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail") or resp.text
            except ValueError:
                detail = resp.text
            logger.warning("[api] %s %s status=%d detail=%r", method, url, resp.status_code, str(detail)[:400])
            raise ConvoAPIError(resp.status_code, str(detail))

        try:
            return resp.json()
        except ValueError as e:
            raise ConvoAPIError(resp.status_code, "Server returned a non-JSON body.") from e

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")

    def state(self) -> Dict[str, Any]:
        return self._request("GET", "/state")

    def create_session(self) -> Dict[str, Any]:
        return self._request("POST", "/sessions")

    def select_session(self, session_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/sessions/{session_id}/select")

    def share_session(self, session_id: str, user_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/sessions/{session_id}/share", {"user_id": user_id})

    def chat(self, message: str) -> Dict[str, Any]:
        return self._request("POST", "/chat", {"message": message})

    def regenerate(self, kind: str) -> Dict[str, Any]:
        return self._request("POST", "/regenerate", {"kind": kind})

    def set_model(self, model: str) -> Dict[str, Any]:
        return self._request("PUT", "/model", {"model": model})

    def models(self) -> List[Dict[str, str]]:
        return self._request("GET", "/models")

    def export(self) -> Dict[str, Any]:
        return self._request("GET", "/export")
