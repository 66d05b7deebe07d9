"""Offline backend with canned replies, for dry runs and tests."""

import random
from typing import Optional

from ..models import Speaker
from .base import GenerationRequest, GenerationResult

SIMULATED_USER_REPLIES = {
    "es": [
        "Eso tiene mucho sentido, gracias por explicármelo así.",
        "No había pensado en eso antes, me ayuda mucho.",
        "¿Podrías darme un ejemplo concreto de cómo hacer eso?",
        "Me da un poco de miedo intentarlo, pero creo que tenés razón.",
        "¿Y si no funciona? ¿Qué otras opciones tendría?",
        "Perfecto, voy a intentar eso. ¿Hay algo más que debería saber?",
    ],
    "en": [
        "That makes a lot of sense, thanks for explaining it that way.",
        "I hadn't thought about that before, it really helps.",
        "Could you give me a concrete example of how to do that?",
        "I'm a bit afraid to try it, but I think you're right.",
        "What if it doesn't work? What other options would I have?",
        "Perfect, I'm going to try that. Is there anything else I should know?",
    ],
}

# Responder replies by conversation phase
SIMULATED_RESPONDER_REPLIES = {
    "es": {
        "opening": "Hola, estoy aquí para acompañarte. ¿Qué está pasando?",
        "recap": "Entiendo que estás pasando por una situación difícil. Lo que me compartes suena realmente desafiante.",
        "question": "¿Cómo te sentís cuando esto pasa?",
        "move": (
            "Te sugiero dos opciones: A) Hablar directamente con la persona involucrada, "
            "o B) Tomarte un tiempo para reflexionar primero. ¿Cuál te resuena más?"
        ),
        "wrap": "Has compartido mucho y espero que esto te ayude. ¿Hay algo más en lo que pueda apoyarte hoy?",
    },
    "en": {
        "opening": "Hi, I'm here to keep you company. What's going on?",
        "recap": "I understand you're going through a difficult situation. What you're sharing sounds really challenging.",
        "question": "How do you feel when this happens?",
        "move": (
            "I suggest two options: A) Talk directly with the person involved, "
            "or B) Take some time to reflect first. Which one resonates more with you?"
        ),
        "wrap": "You've shared a lot and I hope this helps. Is there anything else I can support you with today?",
    },
}

EMOJI_RATE = 0.3


def responder_phase(history_length: int) -> str:
    """Phase for a responder reply given the number of prior messages."""
    if history_length <= 2:
        return "recap"
    if history_length <= 4:
        return "question"
    if history_length <= 6:
        return "move"
    return "wrap"


class SimulatedBackend:
    """Backend that never calls a model.

    Synthetic-user replies rotate with the turn index; responder replies
    follow the conversation phase.
    """

    def __init__(self, rng: Optional[random.Random] = None, emoji_rate: float = EMOJI_RATE):
        self._rng = rng or random.Random()
        self._emoji_rate = emoji_rate

    async def __aenter__(self) -> "SimulatedBackend":
        return self

    async def __aexit__(self, *args) -> None:
        pass

    async def generate(self, role: Speaker, request: GenerationRequest) -> GenerationResult:
        lang = request.lang if request.lang in SIMULATED_USER_REPLIES else "es"

        if role == Speaker.SYNTHETIC_USER:
            replies = SIMULATED_USER_REPLIES[lang]
            text = replies[request.turn_index % len(replies)]
            return GenerationResult(
                success=True,
                text=text,
                meta={"simulated": True, "prompt_length": len(request.system_prompt)},
            )

        history = [m for m in request.messages if m.type != "system"]
        replies = SIMULATED_RESPONDER_REPLIES[lang]
        if not any(m.type == "human" for m in history):
            return GenerationResult(success=True, text=replies["opening"], meta={"simulated": True})

        phase = responder_phase(len(history))
        text = replies[phase]
        if self._rng.random() < self._emoji_rate:
            text += " ✨"
        return GenerationResult(success=True, text=text, meta={"simulated": True, "phase": phase})
