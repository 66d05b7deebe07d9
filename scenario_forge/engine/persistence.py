"""Run and turn persistence.

The orchestrator only talks to a ``RunStore``; where the records end up
(a remote database, local storage) is the store's business.
"""

import uuid
from datetime import datetime
from typing import Optional, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, Field

from scenario_forge.exceptions import PersistenceError

from .models import Beat, SafetyResult, Speaker, TurnMetrics


class RunRecord(BaseModel):
    """Stored run."""

    run_id: str
    scenario_id: str
    profile_id: Optional[str] = None
    story_mode: bool = True
    max_turns: int
    status: str = "running"
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None


class TurnRecord(BaseModel):
    """Stored turn.

    ``index`` orders the run's records and strictly increases;
    ``turn_index`` is the loop turn shared by a synthetic-user/responder
    pair. ``safety`` is attached after insertion.
    """

    turn_id: str
    run_id: str
    index: int
    turn_index: int
    speaker: Speaker
    text: str
    beat: Optional[Beat] = None
    metrics: Optional[TurnMetrics] = None
    memory_facts: list[str] = Field(default_factory=list)
    degraded: bool = False
    safety: Optional[SafetyResult] = None
    created_at: datetime = Field(default_factory=datetime.now)


@runtime_checkable
class RunStore(Protocol):
    """Persistence collaborator for runs and their turns."""

    async def create_run(
        self,
        scenario_id: str,
        profile_id: Optional[str],
        story_mode: bool,
        max_turns: int,
    ) -> str:
        """Open a run and return its id."""
        ...

    async def insert_turn(
        self,
        run_id: str,
        index: int,
        speaker: Speaker,
        text: str,
        beat: Optional[Beat],
        metrics: Optional[TurnMetrics],
        *,
        turn_index: Optional[int] = None,
        memory_facts: Sequence[str] = (),
        degraded: bool = False,
    ) -> str:
        """Append a turn and return its id.

        ``index`` is the record's 1-based position within the run.
        ``memory_facts`` is the memory snapshot the turn was generated with.
        """
        ...

    async def upsert_turn_safety(self, turn_id: str, safety: SafetyResult) -> None:
        ...

    async def finish_run(self, run_id: str, status: str) -> None:
        ...


class InMemoryRunStore:
    """Dict-backed store for simulation-only and guest runs."""

    def __init__(self) -> None:
        self.runs: dict[str, RunRecord] = {}
        self.turns: dict[str, TurnRecord] = {}

    async def create_run(
        self,
        scenario_id: str,
        profile_id: Optional[str],
        story_mode: bool,
        max_turns: int,
    ) -> str:
        run_id = str(uuid.uuid4())
        self.runs[run_id] = RunRecord(
            run_id=run_id,
            scenario_id=scenario_id,
            profile_id=profile_id,
            story_mode=story_mode,
            max_turns=max_turns,
        )
        return run_id

    async def insert_turn(
        self,
        run_id: str,
        index: int,
        speaker: Speaker,
        text: str,
        beat: Optional[Beat],
        metrics: Optional[TurnMetrics],
        *,
        turn_index: Optional[int] = None,
        memory_facts: Sequence[str] = (),
        degraded: bool = False,
    ) -> str:
        if run_id not in self.runs:
            raise PersistenceError(f"Unknown run: {run_id}", operation="insert_turn")
        previous = [t.index for t in self.turns_for_run(run_id)]
        if previous and index <= previous[-1]:
            raise PersistenceError(
                f"Turn index {index} does not follow {previous[-1]} in run {run_id}",
                operation="insert_turn",
            )
        turn_id = str(uuid.uuid4())
        self.turns[turn_id] = TurnRecord(
            turn_id=turn_id,
            run_id=run_id,
            index=index,
            turn_index=turn_index if turn_index is not None else index,
            speaker=speaker,
            text=text,
            beat=beat,
            metrics=metrics,
            memory_facts=list(memory_facts),
            degraded=degraded,
        )
        return turn_id

    async def upsert_turn_safety(self, turn_id: str, safety: SafetyResult) -> None:
        record = self.turns.get(turn_id)
        if record is None:
            raise PersistenceError(f"Unknown turn: {turn_id}", operation="upsert_turn_safety")
        self.turns[turn_id] = record.model_copy(update={"safety": safety})

    async def finish_run(self, run_id: str, status: str) -> None:
        record = self.runs.get(run_id)
        if record is None:
            raise PersistenceError(f"Unknown run: {run_id}", operation="finish_run")
        self.runs[run_id] = record.model_copy(
            update={"status": status, "finished_at": datetime.now()}
        )

    def turns_for_run(self, run_id: str) -> list[TurnRecord]:
        """Get a run's turns ordered by index."""
        return sorted(
            (t for t in self.turns.values() if t.run_id == run_id),
            key=lambda t: t.index,
        )
