# convo/config/settings.py

from dataclasses import dataclass
import os
from pathlib import Path

from dotenv import load_dotenv

# Expose BASE_DIR for other modules
BASE_DIR = Path(__file__).resolve().parents[2]
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

DEFAULT_MODEL = "gpt-4o"

# Models offered to clients; the orchestrator accepts any non-empty id.
SUPPORTED_MODELS = {
    "gpt-4o": "Most capable model",
    "gpt-4o-mini": "Fast and efficient",
    "gpt-4-turbo": "High performance",
    "gpt-3.5-turbo": "Cost effective",
}


@dataclass
class Settings:
    # Core OpenAI config
    openai_api_key: str
    openai_model: str = DEFAULT_MODEL
    openai_base_url: str = "https://api.openai.com/v1"

    # Completion knobs
    openai_temperature: float = 0.7
    openai_max_tokens: int = 1000
    openai_timeout_seconds: float = 60.0

    # Database path
    db_path: str = str(BASE_DIR / "convo" / "data" / "convo.db")


def _parse_float_env(name: str, default: float, min_val: float = 0.0, max_val: float = 600.0) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(min_val, min(max_val, value))


def _parse_int_env(name: str, default: int, min_val: int = 1, max_val: int = 32000) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
        # clamp into sane range
        return max(min_val, min(max_val, value))
    except ValueError:
        return default


def _strip_outer_quotes(s: str) -> str:
    """
    Users sometimes put OPENAI_BASE_URL="https://..." including quotes.
    This removes a single pair of matching outer quotes.
    """
    s2 = (s or "").strip()
    if len(s2) >= 2 and s2[0] == s2[-1] and s2[0] in ("'", '"'):
        return s2[1:-1].strip()
    return s2


def normalize_base_url(raw: str) -> str:
    """
    Ensure the API base ends with /v1 and has no trailing slash.
    A full endpoint like .../v1/chat/completions is trimmed back to /v1.
    """
    base = _strip_outer_quotes(raw or "https://api.openai.com")
    if not (base.startswith("http://") or base.startswith("https://")):
        raise RuntimeError(f"OPENAI_BASE_URL is invalid (missing scheme): {base!r}")

    base = base.rstrip("/")
    if "/v1/" in base:
        return base.split("/v1/")[0] + "/v1"
    if base.endswith("/v1"):
        return base
    return base + "/v1"


def load_settings() -> Settings:
    """
    Load configuration from environment variables (and defaults).
    Raises a RuntimeError if required settings are missing.
    Also ensures the DB directory exists.
    """
    # --- Required: API key ---
    api_key = _strip_outer_quotes(os.getenv("OPENAI_API_KEY", ""))
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is not set in .env or environment")

    # --- Chat model ---
    openai_model = os.getenv("OPENAI_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL

    base_url = normalize_base_url(
        os.getenv("OPENAI_BASE_URL") or os.getenv("OPENAI_API_BASE") or "https://api.openai.com"
    )

    # --- DB path (optional override) ---
    default_db_path = BASE_DIR / "convo" / "data" / "convo.db"
    db_path_env = os.getenv("CONVO_DB_PATH", str(default_db_path)).strip() or str(default_db_path)
    db_path = Path(db_path_env)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    return Settings(
        openai_api_key=api_key,
        openai_model=openai_model,
        openai_base_url=base_url,
        openai_temperature=_parse_float_env("OPENAI_TEMPERATURE", 0.7, max_val=2.0),
        openai_max_tokens=_parse_int_env("OPENAI_MAX_TOKENS", 1000),
        openai_timeout_seconds=_parse_float_env("OPENAI_TIMEOUT_SECONDS", 60.0, min_val=1.0),
        db_path=str(db_path),
    )
