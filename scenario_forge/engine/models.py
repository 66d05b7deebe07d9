"""Pydantic models for simulation runs, turns and results."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Speaker(str, Enum):
    """Role that produced a turn."""

    SYNTHETIC_USER = "synthetic-user"
    RESPONDER = "responder"


class BeatName(str, Enum):
    """Narrative role of a turn within the eight-stage structure."""

    SETUP = "setup"
    INCIDENT = "incident"
    TENSION = "tension"
    MIDPOINT = "midpoint"
    OBSTACLE = "obstacle"
    PROGRESS = "progress"
    PRECLOSE = "preclose"
    CLOSE = "close"


BEAT_TRANSLATIONS: dict[BeatName, dict[str, str]] = {
    BeatName.SETUP: {"es": "setup", "en": "setup"},
    BeatName.INCIDENT: {"es": "incidente", "en": "incident"},
    BeatName.TENSION: {"es": "tensión", "en": "tension"},
    BeatName.MIDPOINT: {"es": "punto medio", "en": "midpoint"},
    BeatName.OBSTACLE: {"es": "obstáculo", "en": "obstacle"},
    BeatName.PROGRESS: {"es": "progreso", "en": "progress"},
    BeatName.PRECLOSE: {"es": "pre-cierre", "en": "preclose"},
    BeatName.CLOSE: {"es": "cierre", "en": "close"},
}


class Beat(BaseModel):
    """A beat assigned to one turn.

    Attributes:
        name: Beat label
        index: 1-based position within the conversation
        total: Total number of turns in the conversation
    """

    model_config = ConfigDict(frozen=True)

    name: BeatName
    index: int = Field(ge=1)
    total: int = Field(ge=1)

    def label(self, lang: str = "es") -> str:
        """Localized beat label."""
        translations = BEAT_TRANSLATIONS[self.name]
        return translations.get(lang, translations["es"])

    def describe(self, lang: str = "es") -> str:
        """Localized label with position, e.g. ``tensión (3/8)``."""
        return f"{self.label(lang)} ({self.index}/{self.total})"


class TurnMetrics(BaseModel):
    """Quick text metrics computed for every persisted turn."""

    chars: int = 0
    paragraphs: int = 0
    questions: int = 0
    emotions: list[str] = Field(default_factory=list)
    needs: list[str] = Field(default_factory=list)
    boundaries: list[str] = Field(default_factory=list)


class RunMetrics(BaseModel):
    """Metrics aggregated across all turns of a conversation."""

    avg_chars: int = 0
    avg_questions: float = 0.0
    emotion_freq: dict[str, int] = Field(default_factory=dict)
    need_freq: dict[str, int] = Field(default_factory=dict)
    boundary_freq: dict[str, int] = Field(default_factory=dict)


class SafetyMatch(BaseModel):
    """One banned-phrase hit, with its span in the original text."""

    phrase: str
    start: int
    end: int


class SafetyResult(BaseModel):
    """Outcome of moderating one piece of generated text."""

    text: str
    matched: list[str] = Field(default_factory=list)
    escalated: bool = False
    positions: list[SafetyMatch] = Field(default_factory=list)
    escalation: Optional[str] = None


class ExtractionMethod(str, Enum):
    """How the facts of a ShortMemory were obtained."""

    HEURISTIC = "heuristic"
    LLM = "llm"
    HYBRID = "hybrid"


class MemoryDebugInfo(BaseModel):
    """Counters describing a memory extraction pass."""

    heuristic_facts: int = 0
    llm_facts: int = 0
    sanitized_count: int = 0


class ShortMemory(BaseModel):
    """Bounded list of salient facts recomputed after each responder turn."""

    facts: list[str] = Field(default_factory=list)
    extraction_method: ExtractionMethod = ExtractionMethod.HEURISTIC
    debug: MemoryDebugInfo = Field(default_factory=MemoryDebugInfo)


class Turn(BaseModel):
    """Single persisted utterance in a run.

    ``turn_index`` is the 1-based loop turn shared by the synthetic-user
    and responder records of one exchange; ``sequence`` increases by one
    for every persisted record.
    """

    turn_index: int
    speaker: Speaker
    text: str
    sequence: int = 0
    run_id: Optional[str] = None
    beat: Optional[Beat] = None
    metrics: Optional[TurnMetrics] = None
    safety: Optional[SafetyResult] = None
    memory_facts: list[str] = Field(default_factory=list)
    degraded: bool = False
    timestamp: datetime = Field(default_factory=datetime.now)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SyncStatus(BaseModel):
    """Whether a conversation's records reached the persistence layer."""

    enabled: bool = True
    status: Literal["synced", "pending", "failed"] = "synced"
    run_id: Optional[str] = None


class SafetyEscalation(BaseModel):
    """A responder turn that was moderated."""

    turn_index: int
    matched: list[str]
    escalation: Optional[str] = None


class LintCode(str, Enum):
    """Codes reported by the conversation linters."""

    LENGTH_MAX = "LENGTH_MAX"
    EMOJI_LIMIT = "EMOJI_LIMIT"
    EMOJI_FORBIDDEN_SET = "EMOJI_FORBIDDEN_SET"
    EMOJI_FORBIDDEN_PHASE = "EMOJI_FORBIDDEN_PHASE"
    PHASE_UNKNOWN = "PHASE_UNKNOWN"
    PHASE_QUESTION_LEN = "PHASE_QUESTION_LEN"
    CTA_INELIGIBLE = "CTA_INELIGIBLE"
    CTA_DURING_CRISIS = "CTA_DURING_CRISIS"
    EVIDENCE_MISSING = "EVIDENCE_MISSING"
    CRISIS_MISSED = "CRISIS_MISSED"
    CRISIS_SUPPRESSION = "CRISIS_SUPPRESSION"
    DIAGNOSIS = "DIAGNOSIS"
    LEGAL_MEDICAL_ADVICE = "LEGAL_MEDICAL_ADVICE"
    GENERATION_ERROR = "GENERATION_ERROR"
    GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
    GENERATION_EMPTY = "GENERATION_EMPTY"


class LintFinding(BaseModel):
    """One rule violation found in a turn."""

    code: LintCode
    details: str = ""


class TurnLint(BaseModel):
    """Findings for one responder turn, keyed by its transcript position."""

    sequence: int
    turn_index: int
    findings: list[LintFinding] = Field(default_factory=list)


class ConversationScores(BaseModel):
    """Scores in [0, 100] derived from a conversation's lint findings."""

    structural: int
    safety: int
    qualitative: int
    total: int


class RunOptions(BaseModel):
    """Options controlling a call to ``run_scenario``."""

    conversations_per_scenario: int = Field(default=1, ge=1)
    max_turns: int = Field(default=10, ge=1)
    story_mode: bool = True
    max_parallel: int = Field(default=4, ge=1)
    lang: Optional[Literal["es", "en"]] = None


class ConversationResult(BaseModel):
    """Result of one simulated conversation."""

    conversation_id: str
    scenario_id: str
    profile_id: Optional[str] = None
    run_id: Optional[str] = None
    status: Literal["completed", "failed", "cancelled", "aborted"] = "completed"
    turns: list[Turn] = Field(default_factory=list)
    memory: ShortMemory = Field(default_factory=ShortMemory)
    metrics: RunMetrics = Field(default_factory=RunMetrics)
    sync: SyncStatus = Field(default_factory=SyncStatus)
    escalations: list[SafetyEscalation] = Field(default_factory=list)
    degraded_turns: int = 0
    lints: list[TurnLint] = Field(default_factory=list)
    scores: Optional[ConversationScores] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def turns_for(self, speaker: Speaker) -> list[Turn]:
        """Get the turns produced by one speaker."""
        return [t for t in self.turns if t.speaker == speaker]

    @property
    def turn_count(self) -> int:
        """Number of completed loop turns."""
        return max((t.turn_index for t in self.turns), default=0)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "conversation_id": self.conversation_id,
            "scenario_id": self.scenario_id,
            "profile_id": self.profile_id,
            "run_id": self.run_id,
            "status": self.status,
            "total_turns": self.turn_count,
            "degraded_turns": self.degraded_turns,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "sync": self.sync.model_dump(),
            "memory": self.memory.model_dump(mode="json"),
            "metrics": self.metrics.model_dump(),
            "escalations": [e.model_dump() for e in self.escalations],
            "lints": [lint.model_dump(mode="json") for lint in self.lints],
            "scores": self.scores.model_dump() if self.scores else None,
            "error": self.error,
            "conversation": [
                {
                    "turn": t.turn_index,
                    "sequence": t.sequence,
                    "speaker": t.speaker.value,
                    "text": t.text,
                    "beat": t.beat.name.value if t.beat else None,
                    "degraded": t.degraded,
                    "escalated": bool(t.safety and t.safety.escalated),
                    "timestamp": t.timestamp.isoformat(),
                }
                for t in self.turns
            ],
        }


class RunResult(BaseModel):
    """Result of running one scenario, one entry per requested conversation."""

    scenario_id: str
    conversations: list[ConversationResult] = Field(default_factory=list)

    @property
    def all_completed(self) -> bool:
        """True if every conversation finished without aborting."""
        return all(c.status == "completed" for c in self.conversations)
