"""Tests for configuration loading."""

import pytest

from scenario_forge.config import (
    EngineConfig,
    EngineSettings,
    get_config,
    load_config,
    load_profile,
    load_scenario,
    reset_config,
)
from scenario_forge.engine.backends import create_backend
from scenario_forge.engine.models import BeatName
from scenario_forge.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run every test away from any local .env and with a fresh singleton."""
    monkeypatch.chdir(tmp_path)
    for name in ("PROVIDER", "MODEL", "LANG", "MAX_FACTS", "GENERATION_TIMEOUT", "REQUEST_TIMEOUT", "API_KEY"):
        monkeypatch.delenv(f"SCENARIO_FORGE_{name}", raising=False)
    reset_config()
    yield
    reset_config()


def write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


class TestEngineSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        """Defaults target a local Ollama in Spanish."""
        config = EngineConfig()
        assert config.generation.provider == "ollama"
        assert config.generation.model == "llama3.2"
        assert config.memory.max_facts == 5
        assert config.lang == "es"
        assert config.safety.ban_phrases == []

    def test_default_budget_covers_retries(self):
        """Without an explicit overall timeout, timed-out attempts can still be retried."""
        config = EngineConfig()
        assert config.generation_timeout is None

        backend = create_backend(config.generation)
        assert backend.time_budget == 20.0 * 3 + 1.0 + 2.0

    def test_env_override(self, monkeypatch):
        """SCENARIO_FORGE_ variables override defaults."""
        monkeypatch.setenv("SCENARIO_FORGE_MODEL", "qwen2.5")
        monkeypatch.setenv("SCENARIO_FORGE_MAX_FACTS", "3")
        monkeypatch.setenv("SCENARIO_FORGE_REQUEST_TIMEOUT", "7.5")
        monkeypatch.setenv("SCENARIO_FORGE_GENERATION_TIMEOUT", "30")

        config = EngineConfig(settings=EngineSettings())
        assert config.generation.model == "qwen2.5"
        assert config.generation.timeout == 7.5
        assert config.generation_timeout == 30.0
        assert config.memory.max_facts == 3


class TestLoadConfig:
    """Tests for YAML configuration files."""

    def test_sections_override_settings(self, tmp_path):
        """YAML sections win over environment settings."""
        path = write(
            tmp_path / "engine.yaml",
            """
system_spec: "Sos Nini."
generation:
  provider: openai
  model: gpt-4o-mini
  api_key: sk-test
memory:
  max_facts: 2
run:
  max_turns: 6
  conversations_per_scenario: 3
safety:
  ban_phrases: ["hacerme daño"]
  escalation: escalate_specialist
""",
        )
        config = load_config(path)
        assert config.system_spec == "Sos Nini."
        assert config.generation.provider == "openai"
        assert config.generation.api_key == "sk-test"
        assert config.memory.max_facts == 2
        assert config.run.max_turns == 6
        assert config.run.conversations_per_scenario == 3
        assert config.safety.ban_phrases == ["hacerme daño"]

    def test_malformed_safety_degrades(self, tmp_path):
        """A broken safety section means no banned phrases."""
        path = write(tmp_path / "engine.yaml", "safety: 42\n")
        assert load_config(path).safety.ban_phrases == []

    def test_invalid_run_section(self, tmp_path):
        """Invalid run options are a configuration error."""
        path = write(tmp_path / "engine.yaml", "run:\n  max_turns: 0\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_section_must_be_mapping(self, tmp_path):
        """Sections other than safety must be mappings."""
        path = write(tmp_path / "engine.yaml", "generation: [ollama]\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(path)
        assert exc_info.value.field == "generation"

    def test_invalid_yaml(self, tmp_path):
        """Unparseable YAML is a configuration error."""
        path = write(tmp_path / "engine.yaml", "run: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_missing_file(self, tmp_path):
        """An explicit path that doesn't exist is an error."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_singleton(self):
        """get_config caches until reset."""
        first = get_config()
        assert get_config() is first
        reset_config()
        assert get_config() is not first


class TestDefinitions:
    """Tests for scenario and profile files."""

    def test_load_scenario(self, tmp_path):
        """Scenario YAML becomes a Scenario."""
        path = write(
            tmp_path / "scenario.yaml",
            """
scenario_id: ghosting-01
language: es
seed_turns:
  - "Salí con alguien y ahora no me contesta."
""",
        )
        scenario = load_scenario(path)
        assert scenario.scenario_id == "ghosting-01"
        assert scenario.seed_text == "Salí con alguien y ahora no me contesta."

    def test_invalid_scenario(self, tmp_path):
        """Scenarios without an id are rejected."""
        path = write(tmp_path / "scenario.yaml", "language: es\n")
        with pytest.raises(ConfigurationError):
            load_scenario(path)

    def test_load_profile(self, tmp_path):
        """Profile YAML keeps valid bias and drops malformed safety."""
        path = write(
            tmp_path / "profile.yaml",
            """
profile_id: ansiosa-v1
lang: es
beat_bias:
  tension: 2.0
  unknown: 3
safety: "hacerme daño"
""",
        )
        profile = load_profile(path)
        assert profile.beat_bias == {BeatName.TENSION: 2.0}
        assert profile.safety.ban_phrases == []

    def test_missing_profile(self, tmp_path):
        """Missing profile files are a configuration error."""
        with pytest.raises(ConfigurationError):
            load_profile(tmp_path / "nope.yaml")
