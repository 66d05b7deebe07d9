"""
Shared pytest fixtures for ScenarioForge tests.

These fixtures provide reusable scenarios, profiles and fake collaborators.
"""

import asyncio
import random
from typing import Optional

import pytest

from scenario_forge.engine.backends.base import GenerationRequest, GenerationResult
from scenario_forge.engine.events import InMemoryEventSink
from scenario_forge.engine.models import Speaker, Turn
from scenario_forge.engine.persistence import InMemoryRunStore
from scenario_forge.engine.profile import Profile
from scenario_forge.engine.scenario import Scenario
from scenario_forge.exceptions import GenerationTimeoutError


# =============================================================================
# Fake Collaborators
# =============================================================================

class ScriptedBackend:
    """Backend returning fixed texts per role, optionally failing a role."""

    def __init__(
        self,
        user_text: str = "Me siento confundida con todo esto.",
        responder_text: str = "Entiendo. ¿Qué pasó después?",
        fail_roles: tuple[Speaker, ...] = (),
        raise_roles: tuple[Speaker, ...] = (),
    ):
        self.user_text = user_text
        self.responder_text = responder_text
        self.fail_roles = fail_roles
        self.raise_roles = raise_roles
        self.requests: list[tuple[Speaker, GenerationRequest]] = []

    async def generate(self, role: Speaker, request: GenerationRequest) -> GenerationResult:
        self.requests.append((role, request))
        if role in self.raise_roles:
            raise RuntimeError("backend exploded")
        if role in self.fail_roles:
            return GenerationResult(success=False, meta={"error": "backend unavailable"})
        text = self.user_text if role == Speaker.SYNTHETIC_USER else self.responder_text
        return GenerationResult(success=True, text=text)

    def requests_for(self, role: Speaker) -> list[GenerationRequest]:
        return [r for speaker, r in self.requests if speaker == role]


class HangingBackend:
    """Backend whose calls never finish on their own."""

    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def generate(self, role: Speaker, request: GenerationRequest) -> GenerationResult:
        self.started.set()
        await asyncio.sleep(3600)
        return GenerationResult(success=True, text="too late")


class HangingEventSink(InMemoryEventSink):
    """Event sink that never finishes logging one event type."""

    def __init__(self, hang_on: str) -> None:
        super().__init__()
        self.hang_on = hang_on
        self.started = asyncio.Event()

    async def log_event(self, event) -> None:
        if event.type == self.hang_on:
            self.started.set()
            await asyncio.sleep(3600)
        await super().log_event(event)


class YieldingEventSink(InMemoryEventSink):
    """Event sink that hands control to the loop on every event."""

    async def log_event(self, event) -> None:
        await asyncio.sleep(0)
        await super().log_event(event)


class TimingOutClient:
    """Chat client whose every attempt times out after a short delay."""

    def __init__(self, delay: float = 0.01) -> None:
        self.delay = delay
        self.calls = 0

    async def chat(self, messages) -> str:
        self.calls += 1
        await asyncio.sleep(self.delay)
        raise GenerationTimeoutError()


class FailingEventSink:
    """Event sink that always raises."""

    async def log_event(self, event) -> None:
        raise ConnectionError("event log unreachable")


class FlakyRunStore(InMemoryRunStore):
    """In-memory store with switchable failures."""

    def __init__(
        self,
        fail_create_for: Optional[str] = None,
        fail_insert: bool = False,
        fail_finish: bool = False,
    ):
        super().__init__()
        self.fail_create_for = fail_create_for
        self.fail_insert = fail_insert
        self.fail_finish = fail_finish

    async def create_run(self, scenario_id, profile_id, story_mode, max_turns):
        if self.fail_create_for is not None and profile_id == self.fail_create_for:
            raise ConnectionError("database unreachable")
        return await super().create_run(scenario_id, profile_id, story_mode, max_turns)

    async def insert_turn(self, run_id, index, speaker, text, beat, metrics, **kwargs):
        if self.fail_insert:
            raise ConnectionError("insert failed")
        return await super().insert_turn(run_id, index, speaker, text, beat, metrics, **kwargs)

    async def finish_run(self, run_id, status):
        if self.fail_finish:
            raise ConnectionError("finish failed")
        return await super().finish_run(run_id, status)


def make_turn(text: str, speaker: Speaker = Speaker.SYNTHETIC_USER, turn_index: int = 1) -> Turn:
    return Turn(turn_index=turn_index, speaker=speaker, text=text)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def rng():
    """Seeded random source for deterministic sequences."""
    return random.Random(42)


@pytest.fixture
def scenario():
    """Spanish scenario with one seed turn."""
    return Scenario(
        scenario_id="ghosting-01",
        name="Ghosting después de la primera cita",
        language="es",
        topic="ghosting",
        goals=["validation", "plan"],
        seed_turns=["Salí con alguien y ahora no me contesta los mensajes."],
        relationship_type="dating",
    )


@pytest.fixture
def profile():
    """Anxious-attachment profile with a banned phrase."""
    return Profile(
        profile_id="ansiosa-v1",
        name="Lucía",
        lang="es",
        tone="cálido pero inseguro",
        traits=["reflexiva", "sensible"],
        attachment_style="anxious",
        conflict_style="evita la confrontación",
        emotions_focus=["ansiedad", "tristeza"],
        needs_focus=["claridad"],
        boundaries_focus=["no quiero rogar"],
        example_lines=["No sé si estoy exagerando."],
        question_rate={"min": 0, "max": 2},
        safety={"ban_phrases": ["hacerme daño"], "escalation": "escalate_specialist"},
    )


@pytest.fixture
def event_sink():
    return InMemoryEventSink()


@pytest.fixture
def run_store():
    return InMemoryRunStore()
