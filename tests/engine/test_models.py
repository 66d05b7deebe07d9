"""Tests for profile, scenario and result models."""

import pytest
from pydantic import ValidationError

from conftest import make_turn
from scenario_forge.engine.models import (
    Beat,
    BeatName,
    ConversationResult,
    RunOptions,
    RunResult,
    Speaker,
)
from scenario_forge.engine.profile import Profile, SafetyConfig
from scenario_forge.engine.scenario import Scenario


class TestProfile:
    """Tests for Profile validation."""

    def test_defaults(self):
        """A bare profile gets neutral defaults."""
        profile = Profile(profile_id="p")
        assert profile.lang == "es"
        assert profile.question_rate.max == 2
        assert profile.safety == SafetyConfig()
        assert profile.has_bias is False

    def test_beat_bias_keeps_valid_entries(self):
        """Unknown beats and bad multipliers are dropped."""
        profile = Profile(
            profile_id="p",
            beat_bias={"tension": 2.0, "midpoint": "x", "unknown": 1.5, "obstacle": -1, "progress": 0},
        )
        assert profile.beat_bias == {BeatName.TENSION: 2.0, BeatName.PROGRESS: 0.0}

    def test_malformed_bias_degrades_to_none(self):
        """A non-mapping bias means no bias."""
        assert Profile(profile_id="p", beat_bias=["tension"]).beat_bias == {}

    def test_safety_string_phrase(self):
        """A single string is accepted as one banned phrase."""
        profile = Profile(profile_id="p", safety={"ban_phrases": "matar"})
        assert profile.safety.ban_phrases == ["matar"]

    def test_extra_fields_ignored(self):
        """Unknown profile keys are ignored."""
        assert Profile(profile_id="p", favourite_color="blue").profile_id == "p"

    def test_frozen(self):
        """Profiles are read-only."""
        profile = Profile(profile_id="p")
        with pytest.raises(ValidationError):
            profile.name = "otro"


class TestScenario:
    """Tests for Scenario."""

    def test_seed_text(self, scenario):
        """The first seed turn is the opening."""
        assert scenario.seed_text == "Salí con alguien y ahora no me contesta los mensajes."

    def test_seed_text_fallback(self):
        """Scenarios without seeds still have an opening."""
        assert Scenario(scenario_id="s").seed_text == "Starting conversation"

    def test_rejects_unknown_language(self):
        """Only es, en and mix are valid scenario languages."""
        with pytest.raises(ValidationError):
            Scenario(scenario_id="s", language="fr")


class TestBeat:
    """Tests for Beat."""

    def test_describe(self):
        """Describe shows the localized label and position."""
        beat = Beat(name=BeatName.PRECLOSE, index=7, total=8)
        assert beat.describe("es") == "pre-cierre (7/8)"
        assert beat.describe("en") == "preclose (7/8)"

    def test_unknown_language_uses_spanish(self):
        """Labels fall back to Spanish."""
        assert Beat(name=BeatName.CLOSE, index=1, total=1).label("fr") == "cierre"


class TestRunOptions:
    """Tests for RunOptions."""

    def test_rejects_zero_turns(self):
        """max_turns must be positive."""
        with pytest.raises(ValidationError):
            RunOptions(max_turns=0)

    def test_rejects_unknown_lang(self):
        """Only es and en may be forced."""
        with pytest.raises(ValidationError):
            RunOptions(lang="mix")


class TestConversationResult:
    """Tests for ConversationResult helpers."""

    def test_turn_count_and_speakers(self):
        """turn_count is the highest loop turn."""
        result = ConversationResult(
            conversation_id="c",
            scenario_id="s",
            turns=[
                make_turn("hola", turn_index=1),
                make_turn("hola", Speaker.RESPONDER, turn_index=1),
                make_turn("sigo", turn_index=2),
                make_turn("bien", Speaker.RESPONDER, turn_index=2),
            ],
        )
        assert result.turn_count == 2
        assert len(result.turns_for(Speaker.RESPONDER)) == 2

    def test_to_dict(self):
        """Serialized form lists the conversation in order."""
        result = ConversationResult(
            conversation_id="c",
            scenario_id="s",
            turns=[make_turn("hola")],
        )
        data = result.to_dict()
        assert data["total_turns"] == 1
        assert data["conversation"][0]["speaker"] == "synthetic-user"
        assert data["conversation"][0]["escalated"] is False
        assert data["sync"]["status"] == "synced"

    def test_all_completed(self):
        """A single non-completed conversation fails the batch."""
        ok = ConversationResult(conversation_id="a", scenario_id="s")
        aborted = ConversationResult(conversation_id="b", scenario_id="s", status="aborted")
        assert RunResult(scenario_id="s", conversations=[ok]).all_completed is True
        assert RunResult(scenario_id="s", conversations=[ok, aborted]).all_completed is False
