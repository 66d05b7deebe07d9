"""Backend that sends both roles through an HTTP chat client."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, Union

import httpx

from scenario_forge.exceptions import ConfigurationError, GenerationError

from ..llm.base import GenerationConfig, LLMClient, to_chat_messages
from ..llm.ollama import OllamaClient
from ..llm.openai import OpenAIChatClient
from ..models import Speaker
from .base import GenerationRequest, GenerationResult
from .simulated import SimulatedBackend

logger = logging.getLogger(__name__)

RETRY_DELAYS = (1.0, 2.0)


class ChatBackend:
    """Generation backend over an ``LLMClient`` with retries.

    Retryable failures (timeouts, network errors, HTTP 429/5xx) are retried
    up to ``max_retries`` times. Anything else, or the last failed attempt,
    comes back as an unsuccessful ``GenerationResult``.

    Example usage:
        async with ChatBackend(OllamaClient(config)) as backend:
            result = await backend.generate(Speaker.RESPONDER, request)
    """

    def __init__(
        self,
        client: LLMClient,
        max_retries: int = 2,
        retry_delays: Sequence[float] = RETRY_DELAYS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        attempt_timeout: Optional[float] = None,
    ):
        """Initialize the backend.

        Args:
            client: Chat client used for every attempt
            max_retries: Retries after the first attempt
            retry_delays: Seconds to wait before each retry; the last value
                repeats
            sleep: Awaitable sleep, replaced in tests
            attempt_timeout: The client's own per-attempt timeout, used to
                compute ``time_budget``
        """
        self._client = client
        self._max_retries = max_retries
        self._retry_delays = tuple(retry_delays) or (0.0,)
        self._sleep = sleep
        self._attempt_timeout = attempt_timeout

    def _delay(self, attempt: int) -> float:
        return self._retry_delays[min(attempt, len(self._retry_delays) - 1)]

    @property
    def time_budget(self) -> Optional[float]:
        """Worst-case seconds for one ``generate`` call, every retry included."""
        if self._attempt_timeout is None:
            return None
        delays = sum(self._delay(attempt) for attempt in range(self._max_retries))
        return self._attempt_timeout * (self._max_retries + 1) + delays

    async def __aenter__(self) -> "ChatBackend":
        if hasattr(self._client, "__aenter__"):
            await self._client.__aenter__()
        return self

    async def __aexit__(self, *args) -> None:
        if hasattr(self._client, "__aexit__"):
            await self._client.__aexit__(*args)

    async def generate(self, role: Speaker, request: GenerationRequest) -> GenerationResult:
        messages = to_chat_messages(request.messages)

        for attempt in range(self._max_retries + 1):
            try:
                text = await self._client.chat(messages)
                return GenerationResult(
                    success=True,
                    text=text,
                    meta={"attempts": attempt + 1, "prompt_length": len(request.system_prompt)},
                )
            except GenerationError as e:
                last_attempt = attempt == self._max_retries
                if not e.retryable or last_attempt:
                    logger.error(f"{role.value} generation failed after {attempt + 1} attempt(s): {e}")
                    return GenerationResult(
                        success=False,
                        meta={"error": str(e), "status_code": e.status_code, "attempts": attempt + 1},
                    )
                delay = self._delay(attempt)
                logger.debug(
                    f"Retrying {role.value} request (attempt {attempt + 2}/{self._max_retries + 1}) "
                    f"in {delay}s: {e}"
                )
                await self._sleep(delay)

        return GenerationResult(success=False, meta={"error": "Max retries exceeded"})


def create_backend(
    config: Optional[GenerationConfig] = None,
    simulation_only: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Union[ChatBackend, SimulatedBackend]:
    """Create the backend selected by ``config``.

    Raises:
        ConfigurationError: If the provider is unknown or misconfigured
    """
    if simulation_only:
        return SimulatedBackend()

    config = config or GenerationConfig()
    if config.provider == "ollama":
        client: LLMClient = OllamaClient(config, transport=transport)
    elif config.provider == "openai":
        client = OpenAIChatClient(config, transport=transport)
    else:
        raise ConfigurationError(f"Unsupported provider: {config.provider}", field="provider")

    return ChatBackend(client, max_retries=config.max_retries, attempt_timeout=config.timeout)
