"""Prompt construction for the synthetic user and the responder."""

from typing import Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from .models import Beat, ShortMemory, Speaker, Turn
from .profile import Profile

SYNTHETIC_USER_INSTRUCTION = {
    "es": "Continúa la conversación siguiendo tu perfil y el beat narrativo.",
    "en": "Continue the conversation following your profile and the narrative beat.",
}

LANGUAGE_GUARDS = {
    "es": (
        "You must respond **only in Spanish**. If the user writes in a different language, "
        'ask once: "¿Preferís que sigamos en ese idioma?" and wait for explicit confirmation '
        "before switching. Until confirmed, continue in Spanish. Never mix languages in the "
        "same message."
    ),
    "en": (
        "You must respond **only in English**. If the user writes in a different language, "
        'ask once: "Would you like to switch to that language?" and wait for explicit '
        "confirmation before switching. Until confirmed, continue in English. Never mix "
        "languages in the same message."
    ),
}

_ESCALATION_LABELS = {
    "remind_safety_protocol": {"es": "recordar protocolo de seguridad", "en": "remind safety protocol"},
    "escalate_specialist": {"es": "escalar a especialista", "en": "escalate to specialist"},
}


def render_bullet_list(items: Sequence[str]) -> str:
    return "\n".join(f"  • {item}" for item in items)


def _t(is_spanish: bool, es: str, en: str) -> str:
    return es if is_spanish else en


def build_synthetic_user_prompt(
    profile: Profile,
    seed: str,
    beat: Beat,
    memory: Optional[ShortMemory] = None,
    allow_soft_limit: bool = True,
    default_soft_limit: int = 1000,
) -> str:
    """Render the runtime prompt that makes the model act as the synthetic user.

    Sections: profile, rules (language, questions, safety, length), context
    (seed, current beat, brief memory) and narrative instruction.
    """
    es = profile.lang == "es"
    facts = memory.facts if memory else []
    sections: list[str] = [_t(es, "Actúa como USERAI.", "Act as USERAI."), ""]

    # Profile
    sections.append(_t(es, "Perfil:", "Profile:"))
    lines = [
        _t(es, f"- Nombre: {profile.name}", f"- Name: {profile.name}"),
        _t(es, f"- Idioma: {profile.lang}", f"- Language: {profile.lang}"),
        _t(es, f"- Tono: {profile.tone}", f"- Tone: {profile.tone}"),
        _t(es, f"- Estilo de apego: {profile.attachment_style}", f"- Attachment style: {profile.attachment_style}"),
        _t(es, f"- Estilo de conflicto: {profile.conflict_style}", f"- Conflict style: {profile.conflict_style}"),
    ]
    optional_lists = [
        (profile.traits, "Rasgos", "Traits"),
        (profile.emotions_focus, "Enfoque emocional", "Emotional focus"),
        (profile.needs_focus, "Necesidades clave", "Key needs"),
        (profile.boundaries_focus, "Límites", "Boundaries"),
    ]
    for values, es_label, en_label in optional_lists:
        if values:
            lines.append(f"- {_t(es, es_label, en_label)}: {', '.join(values)}")
    if profile.example_lines:
        lines.append(_t(es, "- Ejemplos de líneas:", "- Example lines:"))
        lines.append(render_bullet_list(profile.example_lines))
    sections.extend(["\n".join(lines), ""])

    # Rules
    rate = profile.question_rate
    sections.append(_t(es, "Reglas:", "Rules:"))
    rules = [
        _t(es, f"- Responde en {profile.lang}.", f"- Respond in {profile.lang}."),
        _t(
            es,
            "- **Sin límite de párrafos**. Usa los que necesites para expresar capas emocionales y cognitivas.",
            "- **No paragraph limit**. Use as many as needed to express emotional and cognitive layers.",
        ),
        _t(
            es,
            f"- Preguntas por turno: entre {rate.min} y {rate.max}.",
            f"- Questions per turn: between {rate.min} and {rate.max}.",
        ),
        _t(es, "- Evita frases de cierre antes del último turno.", "- Avoid closing phrases before the final turn."),
    ]
    if profile.safety.ban_phrases:
        banned = ", ".join(profile.safety.ban_phrases)
        strategy = profile.safety.escalation or "remind_safety_protocol"
        strategy = _ESCALATION_LABELS.get(strategy, {}).get("es" if es else "en", strategy)
        rules.append(
            _t(
                es,
                f"- Si se presenta contenido prohibido ({banned}), aplica: {strategy}.",
                f"- If prohibited content appears ({banned}), apply: {strategy}.",
            )
        )
    if allow_soft_limit:
        soft_limit = profile.verbosity.soft_char_limit or default_soft_limit
        rules.append(
            _t(
                es,
                f"- Sugerencia de longitud (no estricta): ~{soft_limit} caracteres. "
                "Si la claridad requiere más, podés excederte.",
                f"- Length suggestion (not strict): ~{soft_limit} characters. "
                "If clarity requires more, you can exceed it.",
            )
        )
    sections.extend(["\n".join(rules), ""])

    # Context
    sections.append(_t(es, "Contexto:", "Context:"))
    context = [
        f"- Seed: {seed}",
        _t(
            es,
            f"- Beat actual ({beat.index}/{beat.total}): {beat.label('es')}",
            f"- Current beat ({beat.index}/{beat.total}): {beat.label('en')}",
        ),
    ]
    memory_title = _t(es, "- Memoria breve:", "- Brief memory:")
    if facts:
        context.extend([memory_title, render_bullet_list(facts)])
    else:
        context.append(memory_title + _t(es, " (sin datos relevantes)", " (no relevant data)"))
    sections.extend(["\n".join(context), ""])

    # Narrative instruction
    sections.append(_t(es, "Instrucción narrativa:", "Narrative instruction:"))
    instructions = [
        _t(
            es,
            "- Sigue el beat indicado con coherencia. Da ejemplos concretos (frases, chats, situaciones).",
            "- Follow the indicated beat coherently. Give concrete examples (phrases, chats, situations).",
        ),
        _t(
            es,
            "- Integra emociones en capas (primaria + secundaria), necesidades y límites.",
            "- Integrate emotions in layers (primary + secondary), needs and boundaries.",
        ),
        _t(es, "- Mantené el estilo de conflicto del perfil.", "- Maintain the conflict style of the profile."),
    ]
    if rate.max > 0:
        instructions.append(
            _t(
                es,
                f"- Formula {rate.min}–{rate.max} preguntas al final, si corresponde.",
                f"- Ask {rate.min}–{rate.max} questions at the end, if appropriate.",
            )
        )
    sections.append("\n".join(instructions))

    return "\n".join(sections)


def build_default_user_prompt(seed: str, beat: Beat, memory: Optional[ShortMemory], lang: str) -> str:
    """Minimal synthetic user prompt for runs without a profile."""
    es = lang == "es"
    lines = [
        _t(
            es,
            "Actúa como una persona que busca ayuda en una conversación.",
            "Act as a person seeking help in a conversation.",
        ),
        f"- Seed: {seed}",
        _t(es, f"- Beat actual: {beat.describe('es')}", f"- Current beat: {beat.describe('en')}"),
    ]
    if memory and memory.facts:
        lines.append(_t(es, "- Memoria breve:", "- Brief memory:"))
        lines.append(render_bullet_list(memory.facts))
    return "\n".join(lines)


def add_language_guard(system_spec: str, language: str, strictness: float = 0.9) -> str:
    """Prefix the responder's system spec with a single-language guard.

    Mixed-language scenarios and strictness below 0.5 get no guard.
    """
    if language == "mix" or strictness < 0.5 or language not in LANGUAGE_GUARDS:
        return system_spec
    return f"Target locale: {language}\n{LANGUAGE_GUARDS[language]}\n\n{system_spec}"


def build_responder_messages(system_spec: str, transcript: Sequence[Turn]) -> list[BaseMessage]:
    """Chat history for the responder: system spec, then alternating turns."""
    messages: list[BaseMessage] = [SystemMessage(content=system_spec)]
    for turn in transcript:
        if turn.speaker == Speaker.SYNTHETIC_USER:
            messages.append(HumanMessage(content=turn.text))
        else:
            messages.append(AIMessage(content=turn.text))
    return messages


def build_synthetic_user_messages(runtime_prompt: str, lang: str) -> list[BaseMessage]:
    """Chat messages for the synthetic user call."""
    instruction = SYNTHETIC_USER_INSTRUCTION.get(lang, SYNTHETIC_USER_INSTRUCTION["es"])
    return [SystemMessage(content=runtime_prompt), HumanMessage(content=instruction)]
