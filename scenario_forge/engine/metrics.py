"""Quick text metrics for turns and conversations.

Extracts emotions, needs and boundary expressions with small bilingual
lexicons, plus basic length and question counts.
"""

import re
from collections import Counter
from typing import Sequence

from .models import RunMetrics, Turn, TurnMetrics

EMOTION_LEXICONS: dict[str, list[str]] = {
    "es": [
        "miedo", "ansiedad", "tristeza", "enojo", "ira", "frustración", "alegría", "felicidad",
        "amor", "cariño", "odio", "resentimiento", "culpa", "vergüenza", "orgullo", "esperanza",
        "desesperación", "confusión", "claridad", "paz", "estrés", "tensión", "calma", "nervios",
        "preocupación", "tranquilidad", "inseguridad", "confianza", "soledad", "compañía",
    ],
    "en": [
        "fear", "anxiety", "sadness", "anger", "rage", "frustration", "joy", "happiness",
        "love", "affection", "hate", "resentment", "guilt", "shame", "pride", "hope",
        "despair", "confusion", "clarity", "peace", "stress", "tension", "calm", "nerves",
        "worry", "tranquility", "insecurity", "confidence", "loneliness", "companionship",
    ],
}

NEED_LEXICONS: dict[str, list[str]] = {
    "es": [
        "claridad", "tiempo", "espacio", "afecto", "comprensión", "apoyo", "ayuda", "atención",
        "respeto", "valoración", "reconocimiento", "seguridad", "estabilidad", "libertad",
        "autonomía", "control", "orden", "rutina", "flexibilidad", "comunicación", "diálogo",
        "escucha", "paciencia", "tolerancia", "límites", "estructura", "organización",
    ],
    "en": [
        "clarity", "time", "space", "affection", "understanding", "support", "help", "attention",
        "respect", "validation", "recognition", "security", "stability", "freedom",
        "autonomy", "control", "order", "routine", "flexibility", "communication", "dialogue",
        "listening", "patience", "tolerance", "boundaries", "structure", "organization",
    ],
}

BOUNDARY_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "es": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"no quiero", r"prefiero no", r"no me gusta", r"límite", r"hasta aquí",
            r"no más", r"necesito que pare", r"no acepto", r"respeta", r"mi espacio",
        )
    ],
    "en": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"i don't want", r"i prefer not", r"i don't like", r"boundary", r"that's enough",
            r"no more", r"i need it to stop", r"i don't accept", r"respect", r"my space",
        )
    ],
}

# Quoted fragments, bracketed links and parentheticals don't count as questions
_NON_QUESTION_SPANS = [
    re.compile(r'"[^"]*"'),
    re.compile(r"'[^']*'"),
    re.compile(r"\[[^\]]*\]"),
    re.compile(r"\([^)]*\)"),
]
_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")


def count_questions(text: str) -> int:
    """Count real questions, ignoring those inside quotes or links."""
    clean = text
    for pattern in _NON_QUESTION_SPANS:
        clean = pattern.sub("", clean)
    return clean.count("?")


def _lexicon_matches(text: str, lexicon: list[str]) -> list[str]:
    lowered = text.lower()
    return [word for word in lexicon if re.search(rf"\b{re.escape(word)}\b", lowered)]


def _boundary_matches(text: str, lang: str) -> list[str]:
    found: list[str] = []
    for pattern in BOUNDARY_PATTERNS.get(lang, BOUNDARY_PATTERNS["es"]):
        found.extend(m.group(0).lower() for m in pattern.finditer(text))
    return list(dict.fromkeys(found))


def compute_turn_metrics(text: str, lang: str = "es") -> TurnMetrics:
    """Compute metrics for one turn's text."""
    if lang not in EMOTION_LEXICONS:
        lang = "es"
    return TurnMetrics(
        chars=len(text),
        paragraphs=len([p for p in _PARAGRAPH_SPLIT.split(text) if p.strip()]),
        questions=count_questions(text),
        emotions=_lexicon_matches(text, EMOTION_LEXICONS[lang]),
        needs=_lexicon_matches(text, NEED_LEXICONS[lang]),
        boundaries=_boundary_matches(text, lang),
    )


def aggregate_run_metrics(turns: Sequence[Turn]) -> RunMetrics:
    """Aggregate turn metrics across a conversation.

    Turns without metrics count towards the averages' denominator but
    contribute nothing else.
    """
    if not turns:
        return RunMetrics()

    total_chars = 0
    total_questions = 0
    emotions: Counter[str] = Counter()
    needs: Counter[str] = Counter()
    boundaries: Counter[str] = Counter()

    for turn in turns:
        if turn.metrics is None:
            continue
        total_chars += turn.metrics.chars
        total_questions += turn.metrics.questions
        emotions.update(turn.metrics.emotions)
        needs.update(turn.metrics.needs)
        boundaries.update(turn.metrics.boundaries)

    return RunMetrics(
        avg_chars=int(total_chars / len(turns) + 0.5),
        avg_questions=round(total_questions / len(turns), 1),
        emotion_freq=dict(emotions),
        need_freq=dict(needs),
        boundary_freq=dict(boundaries),
    )


def top_items(freq: dict[str, int], n: int = 3) -> list[tuple[str, int]]:
    """Get the ``n`` most frequent items of a frequency map."""
    return sorted(freq.items(), key=lambda item: item[1], reverse=True)[:n]
