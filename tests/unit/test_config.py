"""
Unit tests for SnekConfig.

Tests loading, saving, defaults and environment overrides.
"""

import json
import os
from pathlib import Path

import pytest

from snek.config import CONFIG_PATH, DEFAULT_CONFIG, SnekConfig, load_env_file


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    for var in (
        "SNEK_DEBOUNCE_MS",
        "SNEK_PROVIDER",
        "SNEK_MODEL",
        "SNEK_API_URL",
        "SNEK_TEMPERATURE",
        "SNEK_API_KEY",
    ):
        monkeypatch.delenv(var, raising=False)


class TestSnekConfigDefaults:
    """Tests for default configuration values."""

    def test_default_values(self):
        config = SnekConfig()

        assert config.debounce_ms == 200
        assert config.workspace_dirname == ".snek"
        assert config.provider == "openai"
        assert config.model == "glm-4.6"
        assert config.api_url is None
        assert config.temperature == 0.0

    def test_default_config_dict_matches_dataclass(self):
        assert DEFAULT_CONFIG["debounce_ms"] == SnekConfig().debounce_ms
        assert DEFAULT_CONFIG["model"] == SnekConfig().model

    def test_config_path(self):
        assert CONFIG_PATH == Path.home() / ".snek" / "config.json"


class TestSnekConfigLoad:
    """Tests for SnekConfig.load()."""

    def test_load_without_file_returns_defaults(self, tmp_path: Path):
        config = SnekConfig.load(path=tmp_path / "missing.json")
        assert config == SnekConfig()

    def test_load_with_file(self, tmp_path: Path):
        config_path = tmp_path / "config.json"
        config_path.write_text(
            json.dumps({"debounce_ms": 500, "provider": "anthropic", "model": "claude-haiku"})
        )

        config = SnekConfig.load(path=config_path)

        assert config.debounce_ms == 500
        assert config.provider == "anthropic"
        assert config.model == "claude-haiku"
        assert config.temperature == 0.0

    def test_unknown_keys_ignored(self, tmp_path: Path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"debounce_ms": 10, "legacy_option": True}))

        config = SnekConfig.load(path=config_path)

        assert config.debounce_ms == 10
        assert not hasattr(config, "legacy_option")

    def test_malformed_file_falls_back_to_defaults(self, tmp_path: Path):
        config_path = tmp_path / "config.json"
        config_path.write_text("{ not json")

        assert SnekConfig.load(path=config_path) == SnekConfig()

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"debounce_ms": 500, "model": "from-file"}))
        monkeypatch.setenv("SNEK_DEBOUNCE_MS", "50")
        monkeypatch.setenv("SNEK_MODEL", "from-env")

        config = SnekConfig.load(path=config_path)

        assert config.debounce_ms == 50
        assert config.model == "from-env"

    def test_env_ignored_when_disabled(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SNEK_MODEL", "from-env")
        config = SnekConfig.load(path=tmp_path / "missing.json", use_env=False)
        assert config.model == "glm-4.6"

    def test_invalid_env_value_ignored(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SNEK_DEBOUNCE_MS", "soon")
        config = SnekConfig.load(path=tmp_path / "missing.json")
        assert config.debounce_ms == 200

    def test_api_key_from_environment(self, monkeypatch: pytest.MonkeyPatch):
        config = SnekConfig()
        assert config.api_key is None

        monkeypatch.setenv("SNEK_API_KEY", "sk-test")
        assert config.api_key == "sk-test"


class TestSnekConfigSave:
    def test_save_then_load(self, tmp_path: Path):
        config_path = tmp_path / "nested" / "config.json"
        SnekConfig(debounce_ms=75, provider="anthropic").save(config_path)

        assert config_path.exists()
        loaded = SnekConfig.load(path=config_path, use_env=False)
        assert loaded.debounce_ms == 75
        assert loaded.provider == "anthropic"

    def test_api_key_never_written(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SNEK_API_KEY", "sk-secret")
        config_path = tmp_path / "config.json"

        SnekConfig().save(config_path)

        assert "sk-secret" not in config_path.read_text()


class TestLoadEnvFile:
    def test_missing_env_file(self, tmp_path: Path):
        assert load_env_file(tmp_path / ".env") is False

    def test_env_file_does_not_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        env_file = tmp_path / ".env"
        env_file.write_text("SNEK_MODEL=from-dotenv\nSNEK_DOTENV_MARKER=loaded\n")
        monkeypatch.setenv("SNEK_MODEL", "from-shell")

        try:
            assert load_env_file(env_file) is True
            assert os.environ["SNEK_MODEL"] == "from-shell"
            assert os.environ["SNEK_DOTENV_MARKER"] == "loaded"
        finally:
            os.environ.pop("SNEK_DOTENV_MARKER", None)
