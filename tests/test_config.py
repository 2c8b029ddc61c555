"""Tests for configuration loading."""

import os

import pytest
from pydantic import ValidationError

from src.ciflow.config import DEFAULT_CONFIG_FILE_PATH, CiflowSettings, get_settings


@pytest.fixture
def clean_env(monkeypatch):
    """Remove any CIFLOW_ variables inherited from the environment."""
    for name in list(os.environ):
        if name.startswith("CIFLOW_"):
            monkeypatch.delenv(name)
    return monkeypatch


class TestCiflowSettings:
    """Tests for CiflowSettings."""

    def test_defaults(self, clean_env):
        """Test that default values are loaded when only the token is set."""
        clean_env.setenv("CIFLOW_GITHUB_TOKEN", "test-token")

        settings = get_settings()

        assert settings.github_token == "test-token"
        assert settings.github_base_url == "https://api.github.com"
        assert settings.github_webhook_secret == ""
        assert settings.github_max_retries == 3
        assert settings.config_file_path == DEFAULT_CONFIG_FILE_PATH
        assert settings.log_level == "INFO"
        assert settings.port == 8080

    def test_load_from_env(self, clean_env):
        """Test that config loads from environment variables."""
        clean_env.setenv("CIFLOW_GITHUB_TOKEN", "test-token")
        clean_env.setenv("CIFLOW_GITHUB_BASE_URL", "https://ghe.example.com/api/v3")
        clean_env.setenv("CIFLOW_GITHUB_WEBHOOK_SECRET", "s3cret")
        clean_env.setenv("CIFLOW_CONFIG_FILE_PATH", ".github/ciflow.yml")
        clean_env.setenv("CIFLOW_LOG_LEVEL", "debug")
        clean_env.setenv("CIFLOW_PORT", "9000")

        settings = get_settings()

        assert settings.github_base_url == "https://ghe.example.com/api/v3"
        assert settings.github_webhook_secret == "s3cret"
        assert settings.config_file_path == ".github/ciflow.yml"
        assert settings.log_level == "DEBUG"
        assert settings.port == 9000

    def test_missing_token_is_rejected(self, clean_env):
        with pytest.raises(ValidationError):
            get_settings()

    @pytest.mark.parametrize(
        "field, value",
        [
            ("github_token", "   "),
            ("github_base_url", "ftp://example.com"),
            ("github_max_retries", -1),
            ("github_timeout_seconds", 0),
            ("config_file_path", "/etc/ciflow.yml"),
            ("log_level", "LOUD"),
            ("port", 70000),
        ],
    )
    def test_invalid_values_are_rejected(self, clean_env, field, value):
        kwargs = {"github_token": "test-token", field: value}

        with pytest.raises(ValidationError):
            CiflowSettings(**kwargs)
