"""Service configuration using pydantic-settings.

This module defines the CiflowSettings class that reads configuration
from environment variables with the CIFLOW_ prefix. The GitHub token is
required; everything else has a default.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CONFIG_FILE_PATH = ".github/pytorch-probot.yml"

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class CiflowSettings(BaseSettings):
    """CIFlow push trigger configuration from environment variables.

    All environment variables are prefixed with CIFLOW_ (e.g., CIFLOW_GITHUB_TOKEN).

    Required fields (must be set via environment variables):
    - github_token: GitHub API token used to manage tags and post comments
    """

    model_config = SettingsConfigDict(
        env_prefix="CIFLOW_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    # GitHub API token for listing/creating/deleting refs and posting comments
    github_token: str

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    # Secret for validating webhook signatures; empty disables validation
    github_webhook_secret: str = ""

    # Retry attempts for transient GitHub API failures
    github_max_retries: int = 3

    # Per-request timeout for GitHub API calls
    github_timeout_seconds: float = 30.0

    # -------------------------------------------------------------------------
    # Repository Configuration
    # -------------------------------------------------------------------------
    # Path of the per-repository config file holding ciflow_push_tags
    config_file_path: str = DEFAULT_CONFIG_FILE_PATH

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    log_level: str = "INFO"

    # Host address to bind the server to
    host: str = "0.0.0.0"

    # Port number for the server
    port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_token")
    @classmethod
    def validate_github_token(cls, v: str) -> str:
        """Validate that GitHub token is not empty."""
        if not v or not v.strip():
            raise ValueError("github_token cannot be empty")
        return v

    @field_validator("github_base_url")
    @classmethod
    def validate_github_base_url(cls, v: str) -> str:
        """Validate that the GitHub base URL is a valid URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("github_base_url must start with http:// or https://")
        return v

    @field_validator("github_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("github_max_retries cannot be negative")
        return v

    @field_validator("github_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("github_timeout_seconds must be positive")
        return v

    @field_validator("config_file_path")
    @classmethod
    def validate_config_file_path(cls, v: str) -> str:
        """Validate that the config path is relative to the repository root."""
        if not v or not v.strip():
            raise ValueError("config_file_path cannot be empty")
        if v.startswith("/"):
            raise ValueError("config_file_path must be relative to the repository root")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log level is a standard logging level name."""
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v


def get_settings() -> CiflowSettings:
    """Create and return CiflowSettings instance.

    Returns:
        CiflowSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return CiflowSettings()
