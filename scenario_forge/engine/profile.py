"""Synthetic user profile definitions.

A profile is read-only to the engine and supplied once per run. Safety and
beat-bias sections are optional refinements: malformed values degrade to
"no banned phrases" and "no bias" instead of failing validation.
"""

import logging
import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import BeatName

logger = logging.getLogger(__name__)


class SafetyConfig(BaseModel):
    """Banned phrases and the escalation strategy applied when one matches.

    ``escalation`` is ``remind_safety_protocol``, ``escalate_specialist`` or a
    custom message used verbatim.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    ban_phrases: list[str] = Field(default_factory=list)
    escalation: Optional[str] = None

    @field_validator("ban_phrases", mode="before")
    @classmethod
    def _coerce_phrases(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple, set)):
            logger.warning(f"Ignoring malformed ban_phrases: {value!r}")
            return []
        return [p for p in value if isinstance(p, str) and p.strip()]

    @field_validator("escalation", mode="before")
    @classmethod
    def _coerce_escalation(cls, value: Any) -> Optional[str]:
        if value is None or (isinstance(value, str) and value.strip()):
            return value
        logger.warning(f"Ignoring malformed escalation: {value!r}")
        return None

    @classmethod
    def from_raw(cls, raw: Any) -> "SafetyConfig":
        """Build a config from loosely-typed data, degrading to empty."""
        if isinstance(raw, SafetyConfig):
            return raw
        if raw is None:
            return cls()
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Malformed safety config, using no banned phrases: {e}")
            return cls()


class Verbosity(BaseModel):
    """Length guidance for synthetic user turns."""

    model_config = ConfigDict(frozen=True)

    paragraphs: str = "unlimited"
    soft_char_limit: Optional[int] = Field(default=None, ge=1)
    hard_char_limit: Optional[int] = Field(default=None, ge=1)


class QuestionRate(BaseModel):
    """Allowed number of questions per synthetic user turn."""

    model_config = ConfigDict(frozen=True)

    min: int = Field(default=0, ge=0)
    max: int = Field(default=2, ge=0)


class Profile(BaseModel):
    """Description of the synthetic user driving a run.

    The prompt builder turns the tone and trait vocabulary into the
    synthetic user's runtime prompt; ``beat_bias`` multipliers (0.5 = half
    as likely, 2.0 = twice as likely) skew interior beat selection.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    profile_id: str
    name: str = ""
    description: str = ""
    version: int = 1
    lang: str = "es"

    # Tone and trait vocabulary
    tone: str = ""
    traits: list[str] = Field(default_factory=list)
    attachment_style: str = "secure"
    conflict_style: str = ""
    emotions_focus: list[str] = Field(default_factory=list)
    needs_focus: list[str] = Field(default_factory=list)
    boundaries_focus: list[str] = Field(default_factory=list)
    example_lines: list[str] = Field(default_factory=list)

    verbosity: Verbosity = Field(default_factory=Verbosity)
    question_rate: QuestionRate = Field(default_factory=QuestionRate)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    beat_bias: dict[BeatName, float] = Field(default_factory=dict)

    @field_validator("safety", mode="before")
    @classmethod
    def _coerce_safety(cls, value: Any) -> SafetyConfig:
        return SafetyConfig.from_raw(value)

    @field_validator("beat_bias", mode="before")
    @classmethod
    def _coerce_beat_bias(cls, value: Any) -> dict[str, float]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            logger.warning(f"Ignoring malformed beat_bias: {value!r}")
            return {}

        valid_names = {b.value for b in BeatName}
        bias: dict[str, float] = {}
        for name, multiplier in value.items():
            key = name.value if isinstance(name, BeatName) else name
            if key not in valid_names:
                logger.warning(f"Ignoring bias for unknown beat {name!r}")
                continue
            if isinstance(multiplier, bool) or not isinstance(multiplier, (int, float)):
                logger.warning(f"Ignoring non-numeric bias for {key}: {multiplier!r}")
                continue
            if not math.isfinite(multiplier) or multiplier < 0:
                logger.warning(f"Ignoring out-of-range bias for {key}: {multiplier!r}")
                continue
            bias[key] = float(multiplier)
        return bias

    @property
    def has_bias(self) -> bool:
        return bool(self.beat_bias)
