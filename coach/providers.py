"""
Coach — AI provider clients

One capability, three backends:

    complete(prompt, image=None) -> str

  ollama      · local assistant served by the host (no credential, image-capable)
  openrouter  · HTTP chat-completion relay, bearer credential + identifying headers
  gemini      · direct google-genai client

Clients are built once per resolved configuration (see config.py) and reused
by the gateway until the configuration is invalidated.
"""
from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import ollama
from google import genai
from google.genai import types

from coach.api_exceptions import ProviderHTTPError, ProviderResponseError
from coach.settings import DEFAULT_MODEL, Settings


RELAY_URL           = "https://openrouter.ai/api/v1/chat/completions"
RELAY_TIMEOUT_S     = 60.0
IMAGE_MIME          = "image/jpeg"
LOCAL_DEFAULT_MODEL = "llama3.1:8b"


class ProviderClient(ABC):
    """Uniform text-completion capability."""

    name: str = ""
    requires_credential: bool = True

    def __init__(self, model: str, credential: str = ""):
        self.model = model
        self.credential = credential

    @abstractmethod
    async def complete(self, prompt: str, image: Optional[bytes] = None) -> str:
        ...

    async def aclose(self) -> None:
        return None


# ──────────────────────────────────────────────
# LOCAL ASSISTANT
# ──────────────────────────────────────────────

class AssistantClient(ProviderClient):
    """Chat capability provided by the host's Ollama daemon."""

    name = "ollama"
    requires_credential = False

    def __init__(self, model: str, credential: str = "", host: Optional[str] = None,
                 client: Optional[ollama.AsyncClient] = None):
        super().__init__(model or LOCAL_DEFAULT_MODEL, credential)
        self.client = client or ollama.AsyncClient(host=host)

    async def complete(self, prompt: str, image: Optional[bytes] = None) -> str:
        message: dict[str, Any] = {"role": "user", "content": prompt}
        if image:
            message["images"] = [image]
        response = await self.client.chat(model=self.model, messages=[message])
        content = getattr(getattr(response, "message", None), "content", None)
        if not content:
            raise ProviderResponseError(self.name, "response has no message content")
        return content


# ──────────────────────────────────────────────
# HTTP RELAY
# ──────────────────────────────────────────────

class RelayClient(ProviderClient):
    """OpenRouter-style chat-completion relay over HTTPS."""

    name = "openrouter"

    def __init__(self, model: str, credential: str, site_url: str, app_name: str,
                 http: Optional[httpx.AsyncClient] = None):
        super().__init__(model, credential)
        self.headers = {
            "Authorization": f"Bearer {credential}",
            "HTTP-Referer":  site_url,
            "X-Title":       app_name,
        }
        self.http = http or httpx.AsyncClient(timeout=RELAY_TIMEOUT_S)

    def _payload(self, prompt: str, image: Optional[bytes]) -> dict:
        content: Any = prompt
        if image:
            encoded = base64.b64encode(image).decode("utf-8")
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:{IMAGE_MIME};base64,{encoded}"}},
            ]
        return {"model": self.model, "messages": [{"role": "user", "content": content}]}

    async def complete(self, prompt: str, image: Optional[bytes] = None) -> str:
        response = await self.http.post(RELAY_URL, json=self._payload(prompt, image),
                                        headers=self.headers)
        if not response.is_success:
            raise ProviderHTTPError(self.name, response.status_code, response.text)
        try:
            return response.json()["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProviderResponseError(self.name, f"unexpected payload: {e}") from e

    async def aclose(self) -> None:
        await self.http.aclose()


# ──────────────────────────────────────────────
# DIRECT MODEL
# ──────────────────────────────────────────────

def direct_model_id(model: str) -> str:
    """'google/gemini-2.5-pro' → 'gemini-2.5-pro'; blank → the flash default."""
    return (model or "").rsplit("/", 1)[-1] or DEFAULT_MODEL


class DirectModelClient(ProviderClient):
    """google-genai client called in-process."""

    name = "gemini"

    def __init__(self, model: str, credential: str, client: Optional[genai.Client] = None):
        super().__init__(direct_model_id(model), credential)
        self.client = client or genai.Client(api_key=credential)

    async def complete(self, prompt: str, image: Optional[bytes] = None) -> str:
        contents: list[Any] = [prompt]
        if image:
            contents.append(types.Part.from_bytes(data=image, mime_type=IMAGE_MIME))
        response = await self.client.aio.models.generate_content(model=self.model, contents=contents)
        text = getattr(response, "text", None)
        if not text:
            raise ProviderResponseError(self.name, "response has no text")
        return text


# ──────────────────────────────────────────────
# FACTORY
# ──────────────────────────────────────────────

PROVIDERS = ("ollama", "openrouter", "gemini")


def build_client(provider: str, model: str, credential: str, settings: Settings) -> ProviderClient:
    """Instantiate the client variant for `provider`."""
    if provider == "ollama":
        return AssistantClient(model, credential, host=settings.ollama_host)
    if provider == "openrouter":
        return RelayClient(model, credential, settings.site_url, settings.app_name)
    if provider == "gemini":
        return DirectModelClient(model, credential)
    raise ValueError(f"Unknown AI provider: {provider!r} (expected one of {PROVIDERS})")
