"""
AI configuration resolver.

Resolution order (first hit wins):
  1. memo from an earlier successful resolution
  2. app_settings row id='ai_config', only with a real (non-placeholder) key
  3. AI_PROVIDER / AI_MODEL / AI_API_KEY from the environment
  4. built-in default with an empty key → "unconfigured"

The unconfigured default is never memoized, so settings saved later are seen
on the next call. invalidate() drops the memo and hands back the client built
from it; the gateway closes that client once its queued jobs are done.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from coach.providers import ProviderClient, build_client
from coach.settings import DEFAULT_MODEL, DEFAULT_PROVIDER, Settings

logger = logging.getLogger(__name__)

_PLACEHOLDER_MARKERS = ("your-api-key", "your_api_key", "placeholder", "changeme", "<", "xxxx")


def is_placeholder(credential: Optional[str]) -> bool:
    value = (credential or "").strip().lower()
    if not value:
        return True
    if value.startswith("your"):
        return True
    return any(marker in value for marker in _PLACEHOLDER_MARKERS)


@dataclass(frozen=True)
class AIConfig:
    provider:   str
    model:      str
    credential: str
    source:     str = "default"

    @property
    def is_configured(self) -> bool:
        if self.provider == "ollama":
            return True
        return not is_placeholder(self.credential)


class ConfigResolver:
    """Memoized provider/model/credential lookup."""

    def __init__(self, store, settings: Settings):
        self.store = store
        self.settings = settings
        self._cached: Optional[AIConfig] = None
        self._client: Optional[ProviderClient] = None

    async def resolve(self) -> AIConfig:
        if self._cached is not None:
            return self._cached

        stored = await self._from_store()
        if stored is not None:
            self._cached = stored
            return stored

        env = self._from_env()
        if env is not None:
            self._cached = env
            return env

        logger.warning("No AI credential configured; AI features will report unavailable")
        return AIConfig(DEFAULT_PROVIDER, DEFAULT_MODEL, "", source="default")

    async def client(self) -> Optional[ProviderClient]:
        """Provider client for the resolved config, or None when unconfigured."""
        config = await self.resolve()
        if not config.is_configured:
            return None
        if self._client is None:
            self._client = build_client(config.provider, config.model, config.credential, self.settings)
            logger.info(f"✓ AI provider ready: {config.provider} ({self._client.model}) from {config.source}")
        return self._client

    async def invalidate(self) -> Optional[ProviderClient]:
        """Forget the memo; the next resolve() reads settings again.

        The client built from the old config is returned, not closed: jobs
        already queued on it still run, and the caller closes it afterwards.
        """
        client, self._client, self._cached = self._client, None, None
        logger.info("AI configuration cache invalidated")
        return client

    async def aclose(self) -> None:
        """Forget the memo and close the current client (shutdown only)."""
        client = await self.invalidate()
        if client is not None:
            await client.aclose()

    async def _from_store(self) -> Optional[AIConfig]:
        try:
            row = await self.store.ai_settings()
        except Exception as e:
            logger.warning(f"Could not read stored AI config: {e}")
            return None
        if not row or is_placeholder(row.get("api_key")):
            return None
        return AIConfig(
            provider   = row.get("provider") or DEFAULT_PROVIDER,
            model      = row.get("model") or DEFAULT_MODEL,
            credential = row["api_key"],
            source     = "store",
        )

    def _from_env(self) -> Optional[AIConfig]:
        s = self.settings
        provider = s.ai_provider or DEFAULT_PROVIDER
        if provider != "ollama" and is_placeholder(s.ai_api_key):
            return None
        # ollama picks its own local default when no model is named
        model = s.ai_model or ("" if provider == "ollama" else DEFAULT_MODEL)
        return AIConfig(provider, model, s.ai_api_key, source="env")
