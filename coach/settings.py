"""
Process settings.

Everything read from the environment lives here, loaded once from .env.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


# ──────────────────────────────────────────────
# DEFAULTS
# ──────────────────────────────────────────────

DEFAULT_PROVIDER   = "gemini"
DEFAULT_MODEL      = "gemini-2.5-flash"
DEFAULT_COOLDOWN_S = 2.0
RECOMMENDATION_TTL = 3600     # today's recommendation cache, seconds


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Settings:
    supabase_url:     str
    supabase_key:     str
    redis_url:        Optional[str]
    ai_provider:      str
    ai_model:         str
    ai_api_key:       str
    cooldown_seconds: float
    site_url:         str
    app_name:         str
    ollama_host:      Optional[str]
    log_file:         Optional[str]
    sentry_dsn:       Optional[str]

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            supabase_url     = os.environ.get("SUPABASE_URL", ""),
            supabase_key     = os.environ.get("SUPABASE_KEY", ""),
            redis_url        = os.environ.get("REDIS_URL"),
            ai_provider      = os.environ.get("AI_PROVIDER", ""),
            ai_model         = os.environ.get("AI_MODEL", ""),
            ai_api_key       = os.environ.get("AI_API_KEY", ""),
            cooldown_seconds = _float_env("AI_COOLDOWN_SECONDS", DEFAULT_COOLDOWN_S),
            site_url         = os.environ.get("OPENROUTER_SITE_URL", "http://localhost:8000"),
            app_name         = os.environ.get("OPENROUTER_APP_NAME", "Nutrition Coach"),
            ollama_host      = os.environ.get("OLLAMA_HOST"),
            log_file         = os.environ.get("LOG_FILE"),
            sentry_dsn       = os.environ.get("SENTRY_DSN"),
        )
