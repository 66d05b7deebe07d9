"""Generation backend protocol and its request/result types."""

from typing import Any, Optional, Protocol, runtime_checkable

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, ConfigDict, Field

from ..models import Beat, Speaker


class GenerationRequest(BaseModel):
    """Everything a backend needs to produce one utterance.

    ``messages`` is the full chat history to send, system message first;
    ``system_prompt`` repeats that system message for backends that don't
    talk to a model.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    system_prompt: str
    messages: list[BaseMessage] = Field(default_factory=list)
    beat: Optional[Beat] = None
    memory_facts: list[str] = Field(default_factory=list)
    turn_index: int = 1
    is_final_turn: bool = False
    lang: str = "es"


class GenerationResult(BaseModel):
    """Backend output. ``success=False`` means the caller should fall back."""

    success: bool
    text: str = ""
    meta: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class GenerationBackend(Protocol):
    """Turns a prompt context into text for one of the two roles."""

    async def generate(self, role: Speaker, request: GenerationRequest) -> GenerationResult:
        """Generate the next utterance for ``role``.

        Implementations report failures through ``GenerationResult.success``
        rather than raising.
        """
        ...
