"""ScenarioForge: simulated conversations for auditing conversational AI responders."""

__version__ = "0.1.0"

# Engine
from scenario_forge.engine import (
    Beat,
    BeatName,
    ConversationResult,
    InMemoryEventSink,
    InMemoryRunStore,
    Profile,
    RunOptions,
    RunResult,
    SafetyConfig,
    Scenario,
    ShortMemory,
    SimulatedBackend,
    Speaker,
    Turn,
    TurnOrchestrator,
    apply_safety,
    extract_short_memory,
    pick_beat_for_turn,
    run_scenario,
)

# Configuration
from scenario_forge.config import EngineConfig, get_config, load_config, reset_config

# Exceptions
from scenario_forge.exceptions import (
    ConfigurationError,
    GenerationError,
    PersistenceError,
    ScenarioForgeError,
)

__all__ = [
    "__version__",
    # Engine
    "TurnOrchestrator",
    "run_scenario",
    "Scenario",
    "Profile",
    "SafetyConfig",
    "RunOptions",
    "RunResult",
    "ConversationResult",
    "Turn",
    "Speaker",
    "Beat",
    "BeatName",
    "ShortMemory",
    "SimulatedBackend",
    "InMemoryEventSink",
    "InMemoryRunStore",
    "apply_safety",
    "extract_short_memory",
    "pick_beat_for_turn",
    # Configuration
    "EngineConfig",
    "get_config",
    "load_config",
    "reset_config",
    # Exceptions
    "ScenarioForgeError",
    "ConfigurationError",
    "GenerationError",
    "PersistenceError",
]
