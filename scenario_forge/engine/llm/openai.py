"""Client for OpenAI-compatible chat completion endpoints."""

from typing import Optional

import httpx

from scenario_forge.exceptions import ConfigurationError, GenerationError

from .base import GenerationConfig, translate_http_error

DEFAULT_OPENAI_URL = "https://api.openai.com/v1"


class OpenAIChatClient:
    """Async client for ``/chat/completions``."""

    def __init__(
        self,
        config: GenerationConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not config.api_key:
            raise ConfigurationError("OpenAI provider requires an api_key", field="api_key")
        self._config = config
        self._base_url = (config.base_url or DEFAULT_OPENAI_URL).rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "OpenAIChatClient":
        self._client = httpx.AsyncClient(
            timeout=self._config.timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self._config.api_key}"},
        )
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def chat(self, messages: list[dict[str, str]]) -> str:
        if not self._client:
            raise RuntimeError("Client not initialized. Use async context manager.")

        try:
            response = await self._client.post(
                f"{self._base_url}/chat/completions",
                json={
                    "model": self._config.model,
                    "messages": messages,
                    "temperature": self._config.temperature,
                    "max_tokens": self._config.max_tokens,
                    "presence_penalty": 0,
                    "frequency_penalty": 0,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise translate_http_error(e) from e

        data = response.json()
        choices = data.get("choices") or [{}]
        text = (choices[0].get("message") or {}).get("content") or ""
        if not text:
            raise GenerationError("Empty response from OpenAI")
        return text
