"""Conversation simulation engine.

Drives a scenario through a bounded sequence of turns between a synthetic
user and a responder. Each turn gets a narrative beat, the responder's reply
is moderated for banned phrases, and a short memory of salient facts is
recomputed for the next prompt.

Example usage:
    from scenario_forge.engine import RunOptions, Scenario, run_scenario

    scenario = Scenario(scenario_id="ghosting", seed_turns=["No me contesta hace días"])
    result = await run_scenario(scenario, RunOptions(max_turns=8), simulation_only=True)
"""

from .backends import (
    ChatBackend,
    GenerationBackend,
    GenerationRequest,
    GenerationResult,
    SimulatedBackend,
    create_backend,
)
from .beats import BeatSequencer, generate_beat_sequence, pick_beat_for_turn
from .events import (
    Event,
    EventLevel,
    EventSeverity,
    EventSink,
    EventType,
    InMemoryEventSink,
    JsonlEventSink,
    LoggingEventSink,
)
from .export import save_conversation
from .linters import LintPolicy, run_all_linters
from .llm import GenerationConfig, OllamaClient, OpenAIChatClient
from .memory import MemoryOptions, PerplexityFactExtractor, extract_short_memory
from .metrics import aggregate_run_metrics, compute_turn_metrics
from .models import (
    Beat,
    BeatName,
    ConversationResult,
    ConversationScores,
    LintCode,
    LintFinding,
    RunOptions,
    RunResult,
    SafetyResult,
    ShortMemory,
    Speaker,
    SyncStatus,
    Turn,
    TurnLint,
)
from .orchestrator import TurnOrchestrator, run_scenario
from .persistence import InMemoryRunStore, RunStore
from .profile import Profile, SafetyConfig
from .safety import SafetyContext, apply_safety
from .scenario import Scenario
from .scoring import aggregate_scores, approval_rate, is_conversation_approved

__all__ = [
    # Entry points
    "TurnOrchestrator",
    "run_scenario",
    # Models
    "Beat",
    "BeatName",
    "ConversationResult",
    "ConversationScores",
    "LintCode",
    "LintFinding",
    "Profile",
    "RunOptions",
    "RunResult",
    "SafetyConfig",
    "SafetyResult",
    "Scenario",
    "ShortMemory",
    "Speaker",
    "SyncStatus",
    "Turn",
    "TurnLint",
    # Components
    "BeatSequencer",
    "generate_beat_sequence",
    "pick_beat_for_turn",
    "SafetyContext",
    "apply_safety",
    "MemoryOptions",
    "PerplexityFactExtractor",
    "extract_short_memory",
    "aggregate_run_metrics",
    "compute_turn_metrics",
    "LintPolicy",
    "run_all_linters",
    "aggregate_scores",
    "approval_rate",
    "is_conversation_approved",
    "save_conversation",
    # Collaborators
    "ChatBackend",
    "GenerationBackend",
    "GenerationConfig",
    "GenerationRequest",
    "GenerationResult",
    "OllamaClient",
    "OpenAIChatClient",
    "SimulatedBackend",
    "create_backend",
    "Event",
    "EventLevel",
    "EventSeverity",
    "EventSink",
    "EventType",
    "InMemoryEventSink",
    "JsonlEventSink",
    "LoggingEventSink",
    "InMemoryRunStore",
    "RunStore",
]
