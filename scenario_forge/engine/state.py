"""Per-conversation state owned by one orchestrator loop."""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .beats import BeatSequencer
from .linters import LintPolicy
from .memory import MemoryOptions
from .models import Beat, RunOptions, SafetyEscalation, SafetyResult, ShortMemory, Turn
from .profile import Profile
from .scenario import Scenario


class TurnStep(str, Enum):
    """States of the per-turn state machine."""

    GEN_USER = "gen_user"
    GEN_RESPONDER = "gen_responder"
    MODERATE = "moderate"
    PERSIST = "persist"
    ADVANCE = "advance"
    DONE = "done"


@dataclass
class TurnDraft:
    """In-flight state of one loop turn, before anything is persisted."""

    turn_index: int
    beat: Beat
    is_final: bool
    memory_facts: list[str]
    user_text: str = ""
    user_degraded: bool = False
    user_meta: dict[str, Any] = field(default_factory=dict)
    responder_text: str = ""
    responder_degraded: bool = False
    responder_meta: dict[str, Any] = field(default_factory=dict)
    safety: Optional[SafetyResult] = None


@dataclass
class ConversationState:
    """Everything one conversation loop owns. Never shared across conversations."""

    conversation_id: str
    scenario: Scenario
    profile: Optional[Profile]
    options: RunOptions
    lang: str
    run_id: str
    rng: random.Random
    sequencer: BeatSequencer
    memory_options: MemoryOptions
    lint_policy: LintPolicy = field(default_factory=LintPolicy)
    transcript: list[Turn] = field(default_factory=list)
    memory: ShortMemory = field(default_factory=ShortMemory)
    escalations: list[SafetyEscalation] = field(default_factory=list)
    degraded_turns: int = 0
    persist_failed: bool = False
    events_failed: bool = False

    @property
    def profile_id(self) -> Optional[str]:
        return self.profile.profile_id if self.profile else None
