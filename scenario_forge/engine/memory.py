"""Short memory extraction from the trailing window of a transcript.

Stage 1 scans recent turns with language-specific patterns, in priority
order: decisions, obstacles, needs, boundaries, emotions. Stage 2 asks an
external model for the remaining facts when stage 1 under-fills and a
fallback is configured. Every fact is sanitized (sensitive self-harm and
violence terms replaced, length capped) before it can reach a prompt.
"""

import logging
import re
from typing import Optional, Protocol, Sequence, runtime_checkable

import httpx
from pydantic import BaseModel, Field

from scenario_forge.exceptions import FactExtractionError

from .models import ExtractionMethod, MemoryDebugInfo, ShortMemory, Speaker, Turn

logger = logging.getLogger(__name__)

HEURISTIC_WINDOW = 8
FALLBACK_WINDOW = 6
MAX_FACT_LENGTH = 80

FACT_PRIORITIES = ("decisions", "obstacles", "needs", "boundaries", "emotions")

_I = re.IGNORECASE

FACT_PATTERNS: dict[str, dict[str, list[re.Pattern[str]]]] = {
    "decisions": {
        "es": [re.compile(p, _I) for p in (r"voy a\s+(.+)", r"decidí\s+(.+)", r"eligió?\s+(.+)", r"haré\s+(.+)")],
        "en": [re.compile(p, _I) for p in (r"i will\s+(.+)", r"decided to\s+(.+)", r"chose to\s+(.+)", r"going to\s+(.+)")],
    },
    "obstacles": {
        "es": [re.compile(p, _I) for p in (r"no responde", r"miedo a\s+(.+)", r"me cuesta\s+(.+)", r"dificultad para\s+(.+)", r"bloqueo")],
        "en": [re.compile(p, _I) for p in (r"doesn't respond", r"afraid of\s+(.+)", r"hard to\s+(.+)", r"difficulty with\s+(.+)", r"blocked")],
    },
    "needs": {
        "es": [re.compile(p, _I) for p in (r"necesito\s+(.+)", r"requiero\s+(.+)", r"me hace falta\s+(.+)", r"busco\s+(.+)")],
        "en": [re.compile(p, _I) for p in (r"need\s+(.+)", r"require\s+(.+)", r"looking for\s+(.+)", r"want\s+(.+)")],
    },
    "boundaries": {
        "es": [re.compile(p, _I) for p in (r"no quiero\s+(.+)", r"límite", r"no acepto\s+(.+)", r"rechazo\s+(.+)")],
        "en": [re.compile(p, _I) for p in (r"don't want\s+(.+)", r"boundary", r"won't accept\s+(.+)", r"refuse to\s+(.+)")],
    },
    "emotions": {
        "es": [
            re.compile(p, _I)
            for p in (r"me siento\s+(.+)", r"siento\s+(.+)", r"emoción", r"ansiedad", r"frustración", r"tristeza", r"enojo")
        ],
        "en": [
            re.compile(p, _I)
            for p in (r"feel\s+(.+)", r"feeling\s+(.+)", r"emotion", r"anxiety", r"frustration", r"sadness", r"anger")
        ],
    },
}

# Fact prefix and the text used when the pattern captured nothing
FACT_TEMPLATES: dict[str, dict[str, tuple[str, Optional[str]]]] = {
    "decisions": {"es": ("Decidió", None), "en": ("Decided", None)},
    "obstacles": {"es": ("Obstáculo", "bloqueo identificado"), "en": ("Obstacle", "block identified")},
    "needs": {"es": ("Necesita", "necesidad expresada"), "en": ("Needs", "need expressed")},
    "boundaries": {"es": ("Límite", "límite establecido"), "en": ("Boundary", "boundary set")},
    "emotions": {"es": ("Siente", "emoción intensa"), "en": ("Feels", "intense emotion")},
}

SENSITIVE_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "es": [re.compile(p, _I) for p in (r"suicid\w*", r"lastimar|daño|herir", r"matar|muerte", r"autolesión")],
    "en": [re.compile(p, _I) for p in (r"suicid\w*", r"hurt|harm|injure", r"kill|death|die", r"self-harm")],
}

SANITIZED_PLACEHOLDER = "[seguro]"

FALLBACK_PROMPTS = {
    "es": (
        "Extrae {needed} hechos relevantes de esta conversación. Formato: una línea por hecho, "
        "enfócate en decisiones, obstáculos, necesidades, límites o emociones clave. "
        "Sé específico y concreto."
    ),
    "en": (
        "Extract {needed} relevant facts from this conversation. Format: one line per fact, "
        "focus on decisions, obstacles, needs, boundaries or key emotions. "
        "Be specific and concrete."
    ),
}

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


class MemoryOptions(BaseModel):
    """Options for ``extract_short_memory``."""

    max_facts: int = Field(default=5, ge=1)
    lang: str = "es"
    use_perplexity_fallback: bool = False
    perplexity_api_key: Optional[str] = None
    fallback_timeout: float = Field(default=20.0, gt=0)


@runtime_checkable
class FactExtractor(Protocol):
    """Model-assisted extractor used by stage 2."""

    async def extract_facts(self, conversation: str, lang: str, needed: int) -> list[str]:
        """Return up to ``needed`` raw fact lines for ``conversation``."""
        ...


class PerplexityFactExtractor:
    """Stage 2 extractor backed by the Perplexity chat completions API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.perplexity.ai",
        model: str = "llama-3.1-sonar-small-128k-online",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._transport = transport

    async def extract_facts(self, conversation: str, lang: str, needed: int) -> list[str]:
        prompt = FALLBACK_PROMPTS.get(lang, FALLBACK_PROMPTS["es"]).format(needed=needed)

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    f"{self._base_url}/chat/completions",
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={
                        "model": self._model,
                        "messages": [
                            {"role": "system", "content": prompt},
                            {"role": "user", "content": conversation},
                        ],
                        "temperature": 0.2,
                        "max_tokens": 300,
                        "return_images": False,
                        "return_related_questions": False,
                    },
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise FactExtractionError(f"Perplexity request failed: {e}") from e

        data = response.json()
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        return [line for line in content.split("\n") if line.strip()][:needed]


def sanitize_fact(fact: str, lang: str = "es") -> tuple[str, bool]:
    """Replace sensitive terms and cap length.

    Returns:
        Tuple of (sanitized fact, whether any sensitive term was replaced)
    """
    sanitized = fact
    was_sanitized = False

    for pattern in SENSITIVE_PATTERNS.get(lang, SENSITIVE_PATTERNS["es"]):
        if pattern.search(sanitized):
            sanitized = pattern.sub(SANITIZED_PLACEHOLDER, sanitized)
            was_sanitized = True

    if len(sanitized) > MAX_FACT_LENGTH:
        sanitized = sanitized[:MAX_FACT_LENGTH - 3] + "..."

    return sanitized, was_sanitized


def _build_fact(category: str, lang: str, match: re.Match[str], turn_text: str) -> str:
    prefix, default = FACT_TEMPLATES[category][lang]
    captured = match.group(1).strip() if match.re.groups and match.group(1) else ""
    if not captured:
        captured = default if default is not None else turn_text[:50]
    return f"{prefix}: {captured}"


def extract_facts_heuristic(
    transcript: Sequence[Turn],
    lang: str,
    max_facts: int,
) -> tuple[list[str], int]:
    """Stage 1: pattern extraction over the last turns of ``transcript``.

    At most one fact is taken per turn and category.

    Returns:
        Tuple of (facts, number of sanitized facts)
    """
    facts: list[str] = []
    sanitized_count = 0
    recent = list(transcript)[-HEURISTIC_WINDOW:]

    for category in FACT_PRIORITIES:
        if len(facts) >= max_facts:
            break
        patterns = FACT_PATTERNS[category][lang]

        for turn in recent:
            if len(facts) >= max_facts:
                break
            for pattern in patterns:
                match = pattern.search(turn.text)
                if not match:
                    continue
                fact, was_sanitized = sanitize_fact(_build_fact(category, lang, match, turn.text), lang)
                if was_sanitized:
                    sanitized_count += 1
                if fact and fact not in facts:
                    facts.append(fact)
                    break

    return facts, sanitized_count


def format_transcript(transcript: Sequence[Turn]) -> str:
    """Render turns as ``SPEAKER: text`` lines."""
    labels = {Speaker.SYNTHETIC_USER: "USERAI", Speaker.RESPONDER: "Nini"}
    return "\n".join(f"{labels[t.speaker]}: {t.text}" for t in transcript)


async def extract_short_memory(
    transcript: Sequence[Turn],
    options: Optional[MemoryOptions] = None,
    fallback: Optional[FactExtractor] = None,
) -> ShortMemory:
    """Derive a bounded ShortMemory from the trailing window of ``transcript``.

    Args:
        transcript: Conversation so far, oldest first
        options: Extraction options (defaults: 5 facts, Spanish, no fallback)
        fallback: Stage 2 extractor; built from the Perplexity key in
            ``options`` when omitted

    Returns:
        ShortMemory with at most ``options.max_facts`` facts
    """
    options = options or MemoryOptions()
    lang = options.lang if options.lang in FACT_PATTERNS["decisions"] else "es"

    facts, sanitized_count = extract_facts_heuristic(transcript, lang, options.max_facts)
    heuristic_facts = len(facts)
    llm_facts = 0

    if len(facts) < options.max_facts and options.use_perplexity_fallback:
        if fallback is None and options.perplexity_api_key:
            fallback = PerplexityFactExtractor(
                options.perplexity_api_key,
                timeout=options.fallback_timeout,
            )
        if fallback is not None:
            needed = options.max_facts - len(facts)
            conversation = format_transcript(list(transcript)[-FALLBACK_WINDOW:])
            try:
                raw_facts = await fallback.extract_facts(conversation, lang, needed)
            except Exception as e:
                logger.warning(f"Memory fallback extraction failed: {e}")
                raw_facts = []

            for raw in raw_facts[:needed]:
                fact, was_sanitized = sanitize_fact(_BULLET.sub("", raw).strip(), lang)
                if was_sanitized:
                    sanitized_count += 1
                if fact and fact not in facts:
                    facts.append(fact)
                    llm_facts += 1

    return ShortMemory(
        facts=facts[:options.max_facts],
        extraction_method=ExtractionMethod.HYBRID if llm_facts > 0 else ExtractionMethod.HEURISTIC,
        debug=MemoryDebugInfo(
            heuristic_facts=heuristic_facts,
            llm_facts=llm_facts,
            sanitized_count=sanitized_count,
        ),
    )
