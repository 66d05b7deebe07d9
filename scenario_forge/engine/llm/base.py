"""Shared pieces for the HTTP chat clients."""

from typing import Literal, Optional, Protocol, Sequence, runtime_checkable

import httpx
from langchain_core.messages import BaseMessage
from pydantic import BaseModel, Field

from scenario_forge.exceptions import GenerationError, GenerationTimeoutError

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_ROLES = {"system": "system", "human": "user", "ai": "assistant"}


class GenerationConfig(BaseModel):
    """Configuration for the generation backend."""

    provider: Literal["ollama", "openai"] = "ollama"
    model: str = "llama3.2"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 500
    timeout: float = Field(default=20.0, gt=0)
    max_retries: int = Field(default=2, ge=0)


@runtime_checkable
class LLMClient(Protocol):
    """Async chat client: role/content dicts in, reply text out."""

    async def chat(self, messages: list[dict[str, str]]) -> str:
        ...


def to_chat_messages(messages: Sequence[BaseMessage]) -> list[dict[str, str]]:
    """Convert langchain messages to ``{"role", "content"}`` dicts."""
    return [
        {"role": _ROLES.get(m.type, "user"), "content": str(m.content)}
        for m in messages
    ]


def translate_http_error(error: httpx.HTTPError) -> GenerationError:
    """Map an httpx failure onto the generation error taxonomy."""
    if isinstance(error, httpx.TimeoutException):
        return GenerationTimeoutError()
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return GenerationError(
            f"API error: {status} {error.response.reason_phrase}",
            retryable=status in RETRYABLE_STATUS_CODES,
            status_code=status,
        )
    # Connection resets, DNS failures and the like
    return GenerationError(f"Network error: {error}", retryable=True)
