"""LLM clients for generation calls."""

from .base import GenerationConfig, LLMClient, to_chat_messages
from .ollama import OllamaClient
from .openai import OpenAIChatClient

__all__ = [
    "GenerationConfig",
    "LLMClient",
    "OllamaClient",
    "OpenAIChatClient",
    "to_chat_messages",
]
