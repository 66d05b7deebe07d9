"""Safety moderation for generated text.

Banned phrases from the profile and the global configuration are matched as
whole-word sequences against a normalized form of the text (lowercase,
diacritics stripped, punctuation collapsed to single spaces). When a phrase
matches, the text is either partially redacted (safe sentences kept, safety
message appended) or replaced by the escalation message.
"""

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from .models import SafetyMatch, SafetyResult, Speaker
from .profile import Profile, SafetyConfig

logger = logging.getLogger(__name__)

REMIND_SAFETY_PROTOCOL = "remind_safety_protocol"
ESCALATE_SPECIALIST = "escalate_specialist"

# Fraction of sentences that must survive filtering to keep partial text
SAFE_SENTENCE_RETENTION_THRESHOLD = 0.3

SAFETY_TEMPLATES: dict[str, dict[str, str]] = {
    "es": {
        REMIND_SAFETY_PROTOCOL: (
            "Entiendo tu situación. Es importante recordar que hay recursos profesionales "
            "disponibles si necesitas apoyo adicional. ¿Te gustaría que hablemos de "
            "estrategias concretas que puedas implementar paso a paso?"
        ),
        ESCALATE_SPECIALIST: (
            "Veo que esta situación requiere atención especializada. Te sugiero contactar "
            "con un profesional de salud mental o llamar a una línea de ayuda. Mientras "
            "tanto, ¿hay alguien de confianza con quien puedas hablar?"
        ),
    },
    "en": {
        REMIND_SAFETY_PROTOCOL: (
            "I understand your situation. It's important to remember that professional "
            "resources are available if you need additional support. Would you like us to "
            "talk about concrete strategies you can implement step by step?"
        ),
        ESCALATE_SPECIALIST: (
            "I see this situation requires specialized attention. I suggest contacting a "
            "mental health professional or calling a helpline. In the meantime, is there "
            "someone you trust you can talk to?"
        ),
    },
}

_WORD_CHAR = re.compile(r"\w")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


@dataclass
class SafetyContext:
    """Who produced the text and which safety configuration applies."""

    speaker: Speaker = Speaker.RESPONDER
    lang: str = "es"
    profile: Optional[Profile] = None
    global_safety: Optional[SafetyConfig] = None


def normalize_text(text: str) -> str:
    """Lowercase, strip diacritics and collapse non-word runs to one space."""
    return _normalize_with_offsets(text)[0]


def _normalize_with_offsets(text: str) -> tuple[str, list[int]]:
    """Normalize ``text`` and map each output char to its source index."""
    chars: list[str] = []
    offsets: list[int] = []

    for i, ch in enumerate(text):
        for decomposed in unicodedata.normalize("NFD", ch):
            if unicodedata.combining(decomposed):
                continue
            for c in decomposed.lower():
                if _WORD_CHAR.match(c):
                    chars.append(c)
                    offsets.append(i)
                elif chars and chars[-1] != " ":
                    chars.append(" ")
                    offsets.append(i)

    if chars and chars[-1] == " ":
        chars.pop()
        offsets.pop()

    return "".join(chars), offsets


def _phrase_pattern(phrase: str) -> Optional[re.Pattern[str]]:
    words = normalize_text(phrase).split()
    if not words:
        return None
    return re.compile(r"\b" + r"\s+".join(re.escape(w) for w in words) + r"\b")


def detect_banned_phrases(text: str, banned_phrases: list[str]) -> list[SafetyMatch]:
    """Find every banned phrase occurrence.

    Spans are expressed in the coordinates of ``text`` itself, not of its
    normalized form, so ``text[m.start:m.end]`` is the offending fragment.
    """
    normalized, offsets = _normalize_with_offsets(text)
    matches: list[SafetyMatch] = []

    for phrase in banned_phrases:
        pattern = _phrase_pattern(phrase)
        if pattern is None:
            continue
        for m in pattern.finditer(normalized):
            matches.append(
                SafetyMatch(
                    phrase=phrase,
                    start=offsets[m.start()],
                    end=offsets[m.end() - 1] + 1,
                )
            )

    matches.sort(key=lambda m: (m.start, m.end))
    return matches


def collect_banned_phrases(
    profile: Optional[Profile],
    global_safety: Optional[SafetyConfig],
) -> list[str]:
    """Union of profile and global banned phrases, without duplicates."""
    phrases: list[str] = []
    seen: set[str] = set()
    sources = [
        profile.safety.ban_phrases if profile else [],
        global_safety.ban_phrases if global_safety else [],
    ]
    for source in sources:
        for phrase in source:
            key = normalize_text(phrase)
            if key and key not in seen:
                seen.add(key)
                phrases.append(phrase)
    return phrases


def resolve_escalation(
    profile: Optional[Profile],
    global_safety: Optional[SafetyConfig],
) -> str:
    """Escalation strategy, profile first, then global, then the default."""
    if profile and profile.safety.escalation:
        return profile.safety.escalation
    if global_safety and global_safety.escalation:
        return global_safety.escalation
    return REMIND_SAFETY_PROTOCOL


def escalation_message(escalation: str, lang: str = "es") -> str:
    """Message for a strategy; unknown strategies are custom messages."""
    templates = SAFETY_TEMPLATES.get(lang, SAFETY_TEMPLATES["es"])
    return templates.get(escalation, escalation)


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def apply_safety(
    text: str,
    ctx: SafetyContext,
    retention_threshold: float = SAFE_SENTENCE_RETENTION_THRESHOLD,
) -> SafetyResult:
    """Moderate ``text`` against the banned phrases in ``ctx``.

    Args:
        text: Generated text to inspect
        ctx: Speaker, language and safety configuration
        retention_threshold: Fraction of sentences that must be safe for the
            safe part of the text to be kept alongside the safety message

    Returns:
        SafetyResult with the (possibly replaced) text and match metadata
    """
    banned = collect_banned_phrases(ctx.profile, ctx.global_safety)
    if not banned:
        return SafetyResult(text=text)

    matches = detect_banned_phrases(text, banned)
    if not matches:
        return SafetyResult(text=text)

    escalation = resolve_escalation(ctx.profile, ctx.global_safety)
    message = escalation_message(escalation, ctx.lang)

    sentences = split_sentences(text)
    safe_sentences = [s for s in sentences if not detect_banned_phrases(s, banned)]

    if safe_sentences and len(safe_sentences) > len(sentences) * retention_threshold:
        final_text = ". ".join(safe_sentences) + ". " + message
    else:
        final_text = message

    matched = list(dict.fromkeys(m.phrase for m in matches))
    logger.debug(
        f"Escalated {ctx.speaker.value} text ({escalation}); "
        f"matched={matched}, kept {len(safe_sentences)}/{len(sentences)} sentences"
    )

    return SafetyResult(
        text=final_text,
        matched=matched,
        escalated=True,
        positions=matches,
        escalation=escalation,
    )
