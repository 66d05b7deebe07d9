"""Tests for turn and run metrics."""

from conftest import make_turn
from scenario_forge.engine.metrics import (
    aggregate_run_metrics,
    compute_turn_metrics,
    count_questions,
    top_items,
)
from scenario_forge.engine.models import RunMetrics, TurnMetrics


class TestCountQuestions:
    """Tests for question counting."""

    def test_counts_question_marks(self):
        """Each question mark is one question."""
        assert count_questions("¿Qué hago? ¿Le escribo?") == 2

    def test_ignores_quotes_and_parentheticals(self):
        """Quoted and parenthesized questions don't count."""
        assert count_questions('¿Qué hago? Ella dijo "¿vienes?" (¿o no?)') == 1


class TestComputeTurnMetrics:
    """Tests for compute_turn_metrics."""

    def test_spanish_turn(self):
        """Lexicon hits, paragraphs and questions are extracted."""
        text = "Siento miedo y ansiedad.\n\nNecesito espacio, no quiero discutir. ¿Está mal?"
        metrics = compute_turn_metrics(text, "es")
        assert metrics.chars == len(text)
        assert metrics.paragraphs == 2
        assert metrics.questions == 1
        assert metrics.emotions == ["miedo", "ansiedad"]
        assert metrics.needs == ["espacio"]
        assert metrics.boundaries == ["no quiero"]

    def test_english_turn(self):
        """English lexicons are used for English turns."""
        metrics = compute_turn_metrics("I feel so much anxiety. I need some space.", "en")
        assert metrics.emotions == ["anxiety"]
        assert metrics.needs == ["space"]
        assert metrics.paragraphs == 1

    def test_empty_text(self):
        """Empty text has zero metrics."""
        metrics = compute_turn_metrics("")
        assert metrics.chars == 0
        assert metrics.paragraphs == 0
        assert metrics.emotions == []


class TestAggregateRunMetrics:
    """Tests for aggregate_run_metrics."""

    def test_empty(self):
        """No turns means default metrics."""
        assert aggregate_run_metrics([]) == RunMetrics()

    def test_averages_and_frequencies(self):
        """Chars round half up, questions keep one decimal."""
        first = make_turn("a")
        first.metrics = TurnMetrics(chars=10, questions=1, emotions=["miedo"], needs=["tiempo"])
        second = make_turn("b")
        second.metrics = TurnMetrics(chars=15, questions=2, emotions=["miedo", "calma"])

        metrics = aggregate_run_metrics([first, second])
        assert metrics.avg_chars == 13
        assert metrics.avg_questions == 1.5
        assert metrics.emotion_freq == {"miedo": 2, "calma": 1}
        assert metrics.need_freq == {"tiempo": 1}
        assert metrics.boundary_freq == {}


def test_top_items():
    """Most frequent items come first."""
    assert top_items({"miedo": 3, "calma": 1, "ansiedad": 5, "paz": 2}, n=2) == [
        ("ansiedad", 5),
        ("miedo", 3),
    ]
