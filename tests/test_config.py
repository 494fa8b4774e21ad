"""Tests for configuration loading."""

from pathlib import Path

import pytest

from agent_history.config import DEFAULT_DB_PATH, Settings, load_settings, settings_from_dict
from agent_history.errors import ConfigError


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_missing_file_gives_defaults(self, tmp_path):
        """Test that no config file means default settings."""
        settings = load_settings(tmp_path / "none.toml", env={})
        assert settings.db_path == DEFAULT_DB_PATH
        assert settings.hash_policy == "auto"
        assert settings.workers >= 1

    def test_load_toml(self, tmp_path):
        """Test reading every section."""
        path = tmp_path / "config.toml"
        path.write_text(
            '[general]\n'
            f'db_path = "{tmp_path / "x.db"}"\n'
            'workers = 3\n'
            'hash_policy = "mtime"\n'
            '\n'
            '[agents]\n'
            'enabled = ["claude-code"]\n'
            '\n'
            '[agents.codex]\n'
            f'data_dir = "{tmp_path / "codex"}"\n'
            '\n'
            '[search]\n'
            'relevance_weight = 0.6\n'
            'recency_weight = 0.4\n'
            'max_results = 5\n'
        )
        settings = load_settings(path, env={})
        assert settings.db_path == tmp_path / "x.db"
        assert settings.workers == 3
        assert settings.hash_policy == "mtime"
        assert settings.enabled_agents == ["claude-code"]
        assert settings.agent_roots == {"codex": tmp_path / "codex"}
        assert settings.relevance_weight == 0.6
        assert settings.recency_weight == 0.4
        assert settings.max_results == 5

    def test_env_overrides(self, tmp_path):
        """Test that environment variables pick the file and database."""
        path = tmp_path / "alt.toml"
        path.write_text("[general]\nworkers = 2\n")
        env = {"AGENT_HISTORY_CONFIG": str(path), "AGENT_HISTORY_DB": str(tmp_path / "env.db")}
        settings = load_settings(env=env)
        assert settings.workers == 2
        assert settings.db_path == tmp_path / "env.db"

    def test_malformed_toml(self, tmp_path):
        """Test that a broken file is a ConfigError."""
        path = tmp_path / "config.toml"
        path.write_text("[general\nworkers = ")
        with pytest.raises(ConfigError):
            load_settings(path, env={})

    def test_invalid_values(self):
        """Test that bad values are rejected."""
        with pytest.raises(ConfigError):
            settings_from_dict({"general": {"hash_policy": "sometimes"}})
        with pytest.raises(ConfigError):
            settings_from_dict({"general": {"workers": "many"}})

    def test_defaults(self):
        """Test default dataclass values."""
        settings = Settings()
        assert settings.racy_window == 2.0
        assert settings.active_window == 300
        assert isinstance(settings.db_path, Path)
