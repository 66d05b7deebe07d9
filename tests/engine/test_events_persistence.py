"""Tests for event sinks and the in-memory run store."""

import json
import logging

import pytest

from scenario_forge.engine.events import (
    Event,
    EventLevel,
    EventSeverity,
    EventType,
    InMemoryEventSink,
    JsonlEventSink,
    LoggingEventSink,
)
from scenario_forge.engine.models import Beat, BeatName, SafetyResult, Speaker, TurnMetrics
from scenario_forge.engine.persistence import InMemoryRunStore
from scenario_forge.exceptions import PersistenceError


def make_event(event_type=EventType.TURN_END, level=EventLevel.INFO, **kwargs):
    return Event(level=level, type=event_type, run_id="run-1", **kwargs)


class TestEventSinks:
    """Tests for the bundled sinks."""

    @pytest.mark.asyncio
    async def test_in_memory_filters(self):
        """Events can be filtered by type and level."""
        sink = InMemoryEventSink()
        await sink.log_event(make_event(EventType.RUN_START))
        await sink.log_event(make_event(EventType.LLM_USER_ERROR, EventLevel.ERROR))
        assert len(sink.events) == 2
        assert len(sink.of_type(EventType.RUN_START)) == 1
        assert sink.at_level(EventLevel.ERROR)[0].type == EventType.LLM_USER_ERROR

    @pytest.mark.asyncio
    async def test_logging_sink_maps_levels(self, caplog):
        """WARN events are logged at WARNING with type and severity."""
        sink = LoggingEventSink()
        event = make_event(
            EventType.SAFETY_ESCALATED,
            EventLevel.WARN,
            turn_index=3,
            severity=EventSeverity.HIGH,
        )
        with caplog.at_level(logging.DEBUG, logger="scenario_forge.events"):
            await sink.log_event(event)

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert "SAFETY.ESCALATED [HIGH] run=run-1 turn=3" in record.getMessage()

    @pytest.mark.asyncio
    async def test_jsonl_sink_appends_lines(self, tmp_path):
        """Each event is one JSON line, appended in order."""
        path = tmp_path / "logs" / "events.jsonl"
        sink = JsonlEventSink(path)
        await sink.log_event(make_event(EventType.RUN_START))
        await sink.log_event(make_event(EventType.RUN_END, meta={"status": "completed"}))

        lines = path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["type"] for line in lines] == ["RUN.START", "RUN.END"]
        assert json.loads(lines[1])["meta"] == {"status": "completed"}
        assert json.loads(lines[0])["level"] == "INFO"


class TestInMemoryRunStore:
    """Tests for InMemoryRunStore."""

    @pytest.mark.asyncio
    async def test_run_lifecycle(self):
        """Runs are created, filled with turns and finished."""
        store = InMemoryRunStore()
        run_id = await store.create_run("ghosting-01", "ansiosa-v1", True, 4)
        assert store.runs[run_id].status == "running"

        beat = Beat(name=BeatName.SETUP, index=1, total=4)
        turn_id = await store.insert_turn(
            run_id, 1, Speaker.SYNTHETIC_USER, "hola", beat, TurnMetrics(chars=4)
        )
        await store.upsert_turn_safety(turn_id, SafetyResult(text="hola"))
        await store.finish_run(run_id, "completed")

        assert store.runs[run_id].status == "completed"
        assert store.runs[run_id].finished_at is not None
        [turn] = store.turns_for_run(run_id)
        assert turn.beat == beat
        assert turn.safety.text == "hola"
        assert turn.index == 1
        assert turn.turn_index == 1
        assert turn.memory_facts == []
        assert turn.degraded is False

    @pytest.mark.asyncio
    async def test_turn_extras(self):
        """Loop turn, memory facts and fallback flag are stored with the record."""
        store = InMemoryRunStore()
        run_id = await store.create_run("ghosting-01", None, False, 2)
        await store.insert_turn(run_id, 1, Speaker.SYNTHETIC_USER, "hola", None, None)
        await store.insert_turn(
            run_id,
            2,
            Speaker.RESPONDER,
            "Estoy teniendo un problema técnico.",
            None,
            None,
            turn_index=1,
            memory_facts=["Decidió: hablar con su jefe"],
            degraded=True,
        )

        first, second = store.turns_for_run(run_id)
        assert (first.index, first.turn_index) == (1, 1)
        assert (second.index, second.turn_index) == (2, 1)
        assert second.memory_facts == ["Decidió: hablar con su jefe"]
        assert second.degraded is True

    @pytest.mark.asyncio
    async def test_index_must_increase(self):
        """A record can't reuse or go back to an earlier index."""
        store = InMemoryRunStore()
        run_id = await store.create_run("ghosting-01", None, False, 2)
        await store.insert_turn(run_id, 1, Speaker.SYNTHETIC_USER, "hola", None, None)

        with pytest.raises(PersistenceError) as exc_info:
            await store.insert_turn(run_id, 1, Speaker.RESPONDER, "¿Qué pasó?", None, None)
        assert exc_info.value.operation == "insert_turn"
        assert len(store.turns_for_run(run_id)) == 1

    @pytest.mark.asyncio
    async def test_unknown_run_raises(self):
        """Writes against an unknown run fail with the operation name."""
        store = InMemoryRunStore()
        with pytest.raises(PersistenceError) as exc_info:
            await store.insert_turn("missing", 1, Speaker.RESPONDER, "x", None, None)
        assert exc_info.value.operation == "insert_turn"

        with pytest.raises(PersistenceError):
            await store.finish_run("missing", "completed")

    @pytest.mark.asyncio
    async def test_unknown_turn_raises(self):
        """Safety for an unknown turn fails."""
        store = InMemoryRunStore()
        with pytest.raises(PersistenceError):
            await store.upsert_turn_safety("missing", SafetyResult(text="x"))
