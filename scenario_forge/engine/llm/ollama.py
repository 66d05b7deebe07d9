"""Ollama client for generation calls."""

from typing import Optional

import httpx

from scenario_forge.exceptions import GenerationError

from .base import GenerationConfig, translate_http_error

DEFAULT_OLLAMA_URL = "http://localhost:11434"


class OllamaClient:
    """Async client for the Ollama chat API.

    Example usage:
        async with OllamaClient(GenerationConfig(model="llama3.2")) as client:
            reply = await client.chat([
                {"role": "system", "content": "Act as USERAI..."},
                {"role": "user", "content": "Continue the conversation."},
            ])
    """

    def __init__(
        self,
        config: Optional[GenerationConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Ollama client.

        Args:
            config: Model, sampling and timeout settings
            transport: Optional httpx transport (tests use ``MockTransport``)
        """
        self._config = config or GenerationConfig()
        self._base_url = (self._config.base_url or DEFAULT_OLLAMA_URL).rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "OllamaClient":
        self._client = httpx.AsyncClient(timeout=self._config.timeout, transport=self._transport)
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def chat(self, messages: list[dict[str, str]]) -> str:
        """Send a chat request and return the reply text.

        Raises:
            GenerationError: On HTTP failures or an empty reply
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use async context manager.")

        try:
            response = await self._client.post(
                f"{self._base_url}/api/chat",
                json={
                    "model": self._config.model,
                    "messages": messages,
                    "stream": False,
                    "options": {
                        "temperature": self._config.temperature,
                        "num_predict": self._config.max_tokens,
                    },
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise translate_http_error(e) from e

        data = response.json()
        text = (data.get("message") or {}).get("content") or ""
        if not text:
            raise GenerationError("Empty response from Ollama")
        return text
