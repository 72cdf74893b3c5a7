"""HTTP backends for the supported LLM providers."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from kpi_ai.config import OrchestratorSettings
from kpi_ai.errors import BackendError, UnknownProviderError

logger = logging.getLogger(__name__)

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"


def parse_llm_text(text: Any) -> Any:
    """Best-effort JSON decoding of a model reply.

    Text that does not look like a JSON object or array, or fails to decode,
    is returned unchanged.
    """
    if not isinstance(text, str):
        return text
    stripped = text.strip()
    if not stripped.startswith(("{", "[")):
        return text
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        logger.debug("Model reply looked like JSON but did not decode")
        return text


def _option(context: dict[str, Any], *names: str, default: Any) -> Any:
    for name in names:
        value = context.get(name)
        if value is not None:
            return value
    return default


class LLMBackend(ABC):
    """One provider endpoint reached over a shared async HTTP client."""

    provider: str = ""

    def __init__(
        self,
        settings: OrchestratorSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    async def complete(self, prompt: str, context: dict[str, Any] | None = None) -> Any:
        context = context or {}
        response = await self._client.post(
            self.url,
            headers=self.headers(),
            json=self.build_payload(prompt, context),
            timeout=self.settings.timeout_ms / 1000,
        )
        if not response.is_success:
            raise BackendError(
                f"{self.display_name} API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise BackendError(f"{self.display_name} API returned a non-JSON body") from exc
        return self.extract(body)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def display_name(self) -> str:
        return self.provider.capitalize()

    @property
    @abstractmethod
    def url(self) -> str:
        """Endpoint receiving the POST."""

    @abstractmethod
    def headers(self) -> dict[str, str]:
        """Request headers, including credentials."""

    @abstractmethod
    def build_payload(self, prompt: str, context: dict[str, Any]) -> dict[str, Any]:
        """Provider-specific request body."""

    @abstractmethod
    def extract(self, body: Any) -> Any:
        """Pull the reply out of the provider envelope."""

    def _max_tokens(self, context: dict[str, Any]) -> int:
        return int(
            _option(context, "max_tokens", "maxTokens", default=self.settings.default_max_tokens)
        )

    def _temperature(self, context: dict[str, Any]) -> float:
        return float(
            _option(context, "temperature", default=self.settings.default_temperature)
        )


class AnthropicBackend(LLMBackend):
    provider = "anthropic"

    @property
    def url(self) -> str:
        return ANTHROPIC_URL

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.settings.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def build_payload(self, prompt: str, context: dict[str, Any]) -> dict[str, Any]:
        return {
            "model": _option(context, "model", default=self.settings.anthropic_model),
            "max_tokens": self._max_tokens(context),
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self._temperature(context),
        }

    def extract(self, body: Any) -> Any:
        try:
            text = body["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise BackendError("Anthropic API returned an unexpected payload") from exc
        return parse_llm_text(text)


class OpenAIBackend(LLMBackend):
    provider = "openai"

    @property
    def display_name(self) -> str:
        return "OpenAI"

    @property
    def url(self) -> str:
        return OPENAI_URL

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.api_key or ''}",
        }

    def build_payload(self, prompt: str, context: dict[str, Any]) -> dict[str, Any]:
        return {
            "model": _option(context, "model", default=self.settings.openai_model),
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self._max_tokens(context),
            "temperature": self._temperature(context),
        }

    def extract(self, body: Any) -> Any:
        try:
            text = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise BackendError("OpenAI API returned an unexpected payload") from exc
        return parse_llm_text(text)


class LocalBackend(LLMBackend):
    provider = "local"

    @property
    def display_name(self) -> str:
        return "Local AI"

    @property
    def url(self) -> str:
        return self.settings.local_endpoint

    def headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def build_payload(self, prompt: str, context: dict[str, Any]) -> dict[str, Any]:
        return {
            "prompt": prompt,
            "context": context,
            "model": _option(context, "model", default=self.settings.local_model),
        }

    def extract(self, body: Any) -> Any:
        if isinstance(body, dict) and "response" in body:
            return parse_llm_text(body["response"])
        return parse_llm_text(body)


_BACKENDS: dict[str, type[LLMBackend]] = {
    "anthropic": AnthropicBackend,
    "openai": OpenAIBackend,
    "local": LocalBackend,
}


def create_backend(
    settings: OrchestratorSettings,
    client: httpx.AsyncClient | None = None,
) -> LLMBackend:
    backend_cls = _BACKENDS.get(settings.provider)
    if backend_cls is None:
        raise UnknownProviderError(settings.provider)
    if settings.provider != "local" and not settings.api_key:
        logger.warning("No API key configured for provider %s", settings.provider)
    return backend_cls(settings, client=client)
