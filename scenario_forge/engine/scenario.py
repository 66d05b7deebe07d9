"""Scenario definitions for conversation simulation."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Scenario(BaseModel):
    """Immutable premise for a simulated conversation.

    Created by an external editor and read-only to the engine. The first
    seed turn is the opening line the synthetic user builds on.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    scenario_id: str
    name: str = ""
    language: Literal["es", "en", "mix"] = "es"
    topic: str = ""

    # Narrative goals, e.g. "plan" or "validation"
    goals: list[str] = Field(default_factory=list)

    seed_turns: list[str] = Field(default_factory=list)

    # Target relationship framing, e.g. "partner" or "just_friend"
    relationship_type: str = ""
    constraints: list[str] = Field(default_factory=list)

    @property
    def seed_text(self) -> str:
        """Opening seed for the synthetic user's prompt."""
        if self.seed_turns:
            return self.seed_turns[0]
        return "Starting conversation"
