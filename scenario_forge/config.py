"""Configuration loader for the simulation engine.

Settings come from environment variables (``SCENARIO_FORGE_`` prefix, or a
``.env`` file); a YAML file can override them per section:

    system_spec: "You are Nini, ..."
    generation:
      provider: ollama
      model: llama3.2
    safety:
      ban_phrases: ["hacerme daño"]
      escalation: escalate_specialist
    memory:
      max_facts: 5
    run:
      max_turns: 10
      conversations_per_scenario: 1
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from scenario_forge.engine.llm.base import GenerationConfig
from scenario_forge.engine.memory import MemoryOptions
from scenario_forge.engine.models import RunOptions
from scenario_forge.engine.profile import Profile, SafetyConfig
from scenario_forge.engine.scenario import Scenario
from scenario_forge.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping. Missing files load as empty."""
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}")
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Section '{name}' must be a mapping", field=name)
    return value


class EngineSettings(BaseSettings):
    """Engine settings from environment variables."""

    lang: str = "es"
    max_facts: int = 5
    use_perplexity_fallback: bool = False
    perplexity_api_key: str = ""
    # Per HTTP attempt; generation_timeout defaults to the retry budget
    request_timeout: float = 20.0
    generation_timeout: Optional[float] = None
    persistence_timeout: float = 10.0
    max_parallel: int = 4

    provider: str = "ollama"
    model: str = "llama3.2"
    base_url: str = ""
    api_key: str = ""

    model_config = SettingsConfigDict(
        env_prefix="SCENARIO_FORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class EngineConfig:
    """Full engine configuration from a YAML file + environment."""

    def __init__(self, data: Optional[dict[str, Any]] = None, settings: Optional[EngineSettings] = None):
        data = data or {}
        self.settings = settings or EngineSettings()
        s = self.settings

        self.system_spec: str = data.get("system_spec", "") or ""
        self.generation_timeout: Optional[float] = data.get("generation_timeout", s.generation_timeout)
        self.persistence_timeout: float = data.get("persistence_timeout", s.persistence_timeout)

        generation = {
            "provider": s.provider,
            "model": s.model,
            "base_url": s.base_url or None,
            "api_key": s.api_key or None,
            "timeout": s.request_timeout,
            **_section(data, "generation"),
        }
        memory = {
            "max_facts": s.max_facts,
            "lang": s.lang,
            "use_perplexity_fallback": s.use_perplexity_fallback,
            "perplexity_api_key": s.perplexity_api_key or None,
            **_section(data, "memory"),
        }
        run = {"max_parallel": s.max_parallel, **_section(data, "run")}

        try:
            self.generation = GenerationConfig(**generation)
            self.memory = MemoryOptions(**memory)
            self.run = RunOptions(**run)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid engine configuration: {e}") from e

        # Malformed safety degrades to no banned phrases instead of failing
        self.safety = SafetyConfig.from_raw(data.get("safety"))

    @property
    def lang(self) -> str:
        return self.settings.lang


def load_config(path: Optional[str | Path] = None) -> EngineConfig:
    """Build an EngineConfig from an optional YAML file.

    Raises:
        ConfigurationError: If ``path`` is given but missing or invalid
    """
    if path is None:
        return EngineConfig()
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    return EngineConfig(_load_yaml(path))


def load_scenario(path: str | Path) -> Scenario:
    """Load a scenario definition from YAML."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Scenario file not found: {path}")
    try:
        return Scenario(**_load_yaml(path))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid scenario {path}: {e}") from e


def load_profile(path: str | Path) -> Profile:
    """Load a synthetic user profile from YAML.

    Malformed safety and beat bias sections are dropped with a warning.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Profile file not found: {path}")
    try:
        return Profile(**_load_yaml(path))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid profile {path}: {e}") from e


# Module-level singleton (lazily initialized)
_config: EngineConfig | None = None


def get_config(path: Optional[str | Path] = None) -> EngineConfig:
    """Get or create the engine configuration."""
    global _config
    if _config is None:
        _config = load_config(path)
    return _config


def reset_config() -> None:
    """Reset config singleton (useful for testing)."""
    global _config
    _config = None
