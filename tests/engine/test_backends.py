"""Tests for generation backends and HTTP chat clients."""

import json
import random
from unittest.mock import AsyncMock

import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from scenario_forge.engine.backends import (
    ChatBackend,
    GenerationRequest,
    SimulatedBackend,
    create_backend,
)
from scenario_forge.engine.backends.simulated import (
    SIMULATED_RESPONDER_REPLIES,
    SIMULATED_USER_REPLIES,
    responder_phase,
)
from scenario_forge.engine.llm import GenerationConfig, OllamaClient, OpenAIChatClient, to_chat_messages
from scenario_forge.engine.models import Speaker
from scenario_forge.exceptions import (
    ConfigurationError,
    GenerationError,
    GenerationTimeoutError,
)

MESSAGES = [{"role": "system", "content": "SPEC"}, {"role": "user", "content": "hola"}]


def request_with(*messages, turn_index=1, lang="es"):
    return GenerationRequest(
        system_prompt="SPEC",
        messages=[SystemMessage(content="SPEC"), *messages],
        turn_index=turn_index,
        lang=lang,
    )


def test_to_chat_messages():
    """Langchain message types map onto chat roles."""
    messages = [SystemMessage(content="s"), HumanMessage(content="h"), AIMessage(content="a")]
    assert to_chat_messages(messages) == [
        {"role": "system", "content": "s"},
        {"role": "user", "content": "h"},
        {"role": "assistant", "content": "a"},
    ]


class TestOllamaClient:
    """Tests for OllamaClient over a mock transport."""

    @pytest.mark.asyncio
    async def test_chat_payload_and_reply(self):
        """The request carries model options and the reply content is returned."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"message": {"role": "assistant", "content": "Hola"}})

        config = GenerationConfig(model="llama3.2", temperature=0.2, max_tokens=64)
        async with OllamaClient(config, transport=httpx.MockTransport(handler)) as client:
            assert await client.chat(MESSAGES) == "Hola"

        assert seen["url"] == "http://localhost:11434/api/chat"
        assert seen["body"]["stream"] is False
        assert seen["body"]["options"] == {"temperature": 0.2, "num_predict": 64}
        assert seen["body"]["messages"] == MESSAGES

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        """503 maps to a retryable GenerationError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with OllamaClient(transport=transport) as client:
            with pytest.raises(GenerationError) as exc_info:
                await client.chat(MESSAGES)
        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_client_error_is_not_retryable(self):
        """400 maps to a non-retryable GenerationError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(400))
        async with OllamaClient(transport=transport) as client:
            with pytest.raises(GenerationError) as exc_info:
                await client.chat(MESSAGES)
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Transport timeouts become GenerationTimeoutError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with OllamaClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(GenerationTimeoutError):
                await client.chat(MESSAGES)

    @pytest.mark.asyncio
    async def test_empty_reply(self):
        """An empty message is an error."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"message": {}}))
        async with OllamaClient(transport=transport) as client:
            with pytest.raises(GenerationError, match="Empty response"):
                await client.chat(MESSAGES)

    @pytest.mark.asyncio
    async def test_requires_context_manager(self):
        """Calling chat outside the context manager fails."""
        with pytest.raises(RuntimeError):
            await OllamaClient().chat(MESSAGES)


class TestOpenAIChatClient:
    """Tests for OpenAIChatClient."""

    def test_requires_api_key(self):
        """Missing keys are a configuration error."""
        with pytest.raises(ConfigurationError) as exc_info:
            OpenAIChatClient(GenerationConfig(provider="openai"))
        assert exc_info.value.field == "api_key"

    @pytest.mark.asyncio
    async def test_chat(self):
        """The bearer token is sent and the first choice is returned."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/chat/completions"
            assert request.headers["Authorization"] == "Bearer sk-test"
            return httpx.Response(200, json={"choices": [{"message": {"content": "Entiendo."}}]})

        config = GenerationConfig(provider="openai", model="gpt-4o-mini", api_key="sk-test")
        async with OpenAIChatClient(config, transport=httpx.MockTransport(handler)) as client:
            assert await client.chat(MESSAGES) == "Entiendo."


class TestChatBackend:
    """Tests for ChatBackend retries."""

    @pytest.mark.asyncio
    async def test_success(self):
        """The client reply is returned with attempt metadata."""
        client = AsyncMock()
        client.chat.return_value = "Hola"
        backend = ChatBackend(client)
        result = await backend.generate(Speaker.RESPONDER, request_with(HumanMessage(content="hola")))

        assert result.success is True
        assert result.text == "Hola"
        assert result.meta["attempts"] == 1
        client.chat.assert_awaited_once_with(
            [{"role": "system", "content": "SPEC"}, {"role": "user", "content": "hola"}]
        )

    @pytest.mark.asyncio
    async def test_retries_retryable_errors(self):
        """Retryable errors are retried with increasing delays."""
        client = AsyncMock()
        client.chat.side_effect = [
            GenerationError("busy", retryable=True, status_code=503),
            GenerationTimeoutError(),
            "Por fin",
        ]
        sleep = AsyncMock()
        backend = ChatBackend(client, max_retries=2, sleep=sleep)
        result = await backend.generate(Speaker.SYNTHETIC_USER, request_with())

        assert result.success is True
        assert result.text == "Por fin"
        assert result.meta["attempts"] == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        """The last retryable failure is reported, not raised."""
        client = AsyncMock()
        client.chat.side_effect = GenerationError("busy", retryable=True, status_code=503)
        backend = ChatBackend(client, max_retries=2, sleep=AsyncMock())
        result = await backend.generate(Speaker.RESPONDER, request_with())

        assert result.success is False
        assert result.meta["attempts"] == 3
        assert result.meta["status_code"] == 503
        assert client.chat.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_fails_fast(self):
        """Non-retryable errors are not retried."""
        client = AsyncMock()
        client.chat.side_effect = GenerationError("bad request", status_code=400)
        sleep = AsyncMock()
        backend = ChatBackend(client, max_retries=2, sleep=sleep)
        result = await backend.generate(Speaker.RESPONDER, request_with())

        assert result.success is False
        assert result.meta["error"] == "bad request"
        assert client.chat.await_count == 1
        sleep.assert_not_awaited()

    def test_time_budget(self):
        """The budget covers every attempt and every retry delay."""
        backend = ChatBackend(AsyncMock(), max_retries=2, retry_delays=(1.0, 2.0), attempt_timeout=5.0)
        assert backend.time_budget == 5.0 * 3 + 1.0 + 2.0
        assert ChatBackend(AsyncMock()).time_budget is None

    def test_created_backend_budget(self):
        """Backends built from a config know their client's timeout."""
        backend = create_backend(GenerationConfig(timeout=4.0))
        assert backend.time_budget == 4.0 * 3 + 1.0 + 2.0


class TestSimulatedBackend:
    """Tests for the offline backend."""

    @pytest.mark.asyncio
    async def test_user_replies_rotate(self):
        """Synthetic user replies follow the turn index."""
        backend = SimulatedBackend(rng=random.Random(0))
        result = await backend.generate(Speaker.SYNTHETIC_USER, request_with(turn_index=2))
        assert result.text == SIMULATED_USER_REPLIES["es"][2]

    @pytest.mark.asyncio
    async def test_responder_opening(self):
        """Without a human message the responder opens."""
        backend = SimulatedBackend(emoji_rate=0)
        result = await backend.generate(Speaker.RESPONDER, request_with(lang="en"))
        assert result.text == SIMULATED_RESPONDER_REPLIES["en"]["opening"]

    @pytest.mark.asyncio
    async def test_responder_phase(self):
        """Responder replies follow the history length."""
        backend = SimulatedBackend(emoji_rate=0)
        request = request_with(
            HumanMessage(content="a"), AIMessage(content="b"), HumanMessage(content="c")
        )
        result = await backend.generate(Speaker.RESPONDER, request)
        assert result.text == SIMULATED_RESPONDER_REPLIES["es"]["question"]
        assert result.meta["phase"] == "question"

    def test_phases(self):
        """Phase boundaries by history length."""
        assert [responder_phase(n) for n in (1, 2, 3, 5, 7)] == [
            "recap", "recap", "question", "move", "wrap",
        ]


class TestCreateBackend:
    """Tests for create_backend."""

    def test_simulation_only(self):
        """Simulation mode never builds an HTTP client."""
        assert isinstance(create_backend(simulation_only=True), SimulatedBackend)

    def test_ollama_default(self):
        """Ollama is the default provider."""
        assert isinstance(create_backend(), ChatBackend)

    def test_openai_without_key(self):
        """The OpenAI provider needs a key."""
        with pytest.raises(ConfigurationError):
            create_backend(GenerationConfig(provider="openai"))
