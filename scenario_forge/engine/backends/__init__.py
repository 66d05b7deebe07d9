"""Generation backends."""

from .base import GenerationBackend, GenerationRequest, GenerationResult
from .chat import ChatBackend, create_backend
from .simulated import SimulatedBackend

__all__ = [
    "ChatBackend",
    "GenerationBackend",
    "GenerationRequest",
    "GenerationResult",
    "SimulatedBackend",
    "create_backend",
]
