"""Post-processing for synthetic user turns.

Keeps the synthetic user from wrapping up before the final turn and nudges
its question count into the profile's allowed range.
"""

import random
import re
from dataclasses import dataclass
from typing import Literal, Optional

from .metrics import count_questions
from .profile import QuestionRate

Strategy = Literal["cut", "append", "rewrite"]

CLOSURE_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "es": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\b(eso sería todo|con eso estoy|gracias,.*(me sirve|estoy bien)|cerramos|listo|queda así|perfecto, gracias)\b.*$",
            r"\b(espero que te sirva|quedo atento|saludos|buen día|buenas noches)\b.*$",
            r"\b(eso es todo|ya está|con eso basta|hasta acá llegamos|por ahora es suficiente)\b.*$",
        )
    ],
    "en": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\b(that would be all|that's everything|thanks,.*(that helps|i'm good)|we can close|done|that's it|perfect, thanks)\b.*$",
            r"\b(hope that helps|let me know|regards|good day|good night)\b.*$",
            r"\b(that's all|that's enough|we can stop here|that should do it)\b.*$",
        )
    ],
}

CONTINUITY_QUESTIONS: dict[str, list[str]] = {
    "es": [
        "¿Qué paso pequeño te ves capaz de intentar ahora mismo?",
        "¿Cuál sería una forma concreta de pedírselo?",
        "¿Qué te gustaría que no vuelva a pasar específicamente?",
        "¿Qué emoción te pega más fuerte cuando eso ocurre?",
        "¿Cómo te imaginas que podría ser diferente la próxima vez?",
    ],
    "en": [
        "What small step do you feel capable of trying right now?",
        "What would be a concrete way to ask for that?",
        "What specifically would you like to not happen again?",
        "What emotion hits you strongest when that occurs?",
        "How do you imagine it could be different next time?",
    ],
}

# Below this share of the original length a cut closure gets a question instead
MIN_RETAINED_AFTER_CUT = 0.7


@dataclass
class PostProcessMeta:
    early_closure_detected: bool = False
    question_count_before: int = 0
    question_count_after: int = 0
    strategy: Optional[Strategy] = None
    truncated: bool = False


def _lang(lang: str) -> str:
    return lang if lang in CONTINUITY_QUESTIONS else "es"


def sanitize_early_closure(
    text: str,
    is_final_turn: bool,
    lang: str = "es",
    rng: Optional[random.Random] = None,
) -> tuple[str, PostProcessMeta]:
    """Cut closing phrases from non-final turns.

    If the cut removes too much, the closing phrase is replaced by a
    continuity question instead.
    """
    if is_final_turn:
        return text, PostProcessMeta()

    rng = rng or random.Random()
    lang = _lang(lang)
    for pattern in CLOSURE_PATTERNS[lang]:
        if not pattern.search(text):
            continue
        cut = pattern.sub("", text).strip()
        if len(cut) >= len(text) * MIN_RETAINED_AFTER_CUT:
            return cut, PostProcessMeta(early_closure_detected=True, strategy="cut")
        question = rng.choice(CONTINUITY_QUESTIONS[lang])
        replaced = pattern.sub(f" {question}", text).strip()
        return replaced, PostProcessMeta(early_closure_detected=True, strategy="append")

    return text, PostProcessMeta()


def soft_sanitize_early_closure(
    text: str,
    is_final_turn: bool,
    lang: str = "es",
    rng: Optional[random.Random] = None,
) -> tuple[str, PostProcessMeta]:
    """Append a continuity question after a closing phrase without cutting it."""
    if is_final_turn:
        return text, PostProcessMeta()

    lang = _lang(lang)
    if any(p.search(text) for p in CLOSURE_PATTERNS[lang]):
        question = (rng or random.Random()).choice(CONTINUITY_QUESTIONS[lang])
        return f"{text} {question}", PostProcessMeta(early_closure_detected=True, strategy="append")
    return text, PostProcessMeta()


def enforce_question_rate(
    text: str,
    rate: QuestionRate,
    lang: str = "es",
    rng: Optional[random.Random] = None,
) -> tuple[str, PostProcessMeta]:
    """Bring the question count of ``text`` within ``rate``.

    Too few questions: continuity questions are appended. Too many: every
    question mark past ``rate.max`` becomes a period.
    """
    before = count_questions(text)
    strategy: Optional[Strategy] = None
    result = text

    if before < rate.min:
        strategy = "append"
        questions = CONTINUITY_QUESTIONS[_lang(lang)]
        needed = min(rate.min - before, len(questions))
        picked = (rng or random.Random()).sample(questions, needed)
        result = f"{text} {' '.join(picked)}"
    elif before > rate.max:
        strategy = "rewrite"
        seen = 0

        def _demote(match: re.Match[str]) -> str:
            nonlocal seen
            seen += 1
            return "." if seen > rate.max else match.group(0)

        result = re.sub(r"\?", _demote, text)

    return result, PostProcessMeta(
        question_count_before=before,
        question_count_after=count_questions(result),
        strategy=strategy,
    )


def apply_hard_char_limit(text: str, limit: Optional[int]) -> tuple[str, bool]:
    """Truncate to ``limit`` characters, ellipsis included, at a word boundary."""
    if not limit or len(text) <= limit:
        return text, False
    window = text[: limit - 1]
    cut = window.rsplit(" ", 1)[0].rstrip(" ,;:")
    return (cut or window) + "…", True


def post_process_synthetic_user(
    text: str,
    is_final_turn: bool,
    question_rate: QuestionRate,
    lang: str = "es",
    hard_char_limit: Optional[int] = None,
    use_soft_closure: bool = False,
    rng: Optional[random.Random] = None,
) -> tuple[str, PostProcessMeta]:
    """Full pipeline: closure handling, question rate, hard length limit."""
    sanitize = soft_sanitize_early_closure if use_soft_closure else sanitize_early_closure
    text, closure = sanitize(text, is_final_turn, lang, rng)
    text, questions = enforce_question_rate(text, question_rate, lang, rng)
    text, truncated = apply_hard_char_limit(text, hard_char_limit)

    return text, PostProcessMeta(
        early_closure_detected=closure.early_closure_detected,
        question_count_before=questions.question_count_before,
        question_count_after=questions.question_count_after,
        strategy=closure.strategy or questions.strategy,
        truncated=truncated,
    )
