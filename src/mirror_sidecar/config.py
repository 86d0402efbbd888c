"""Configuration management for the mirror sidecar."""

from __future__ import annotations

import logging
import os
import shlex
from typing import Any

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ENV_FILE = ".env"


class Settings(BaseSettings):
    """Sidecar settings loaded from environment variables and a dotenv file."""

    model_config = SettingsConfigDict(
        env_file=DEFAULT_ENV_FILE,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Remote repository
    git_url: str = Field(default="", description="Git URL")
    git_repo_folder: str = Field(default=".", description="Folder inside the repo to mirror")
    git_local_folder: str = Field(default=".", description="Local folder receiving the mirror")
    git_branch: str = Field(default="master", description="Git branch")
    git_username: str = Field(default="", description="Git username")
    git_password: SecretStr = Field(default=SecretStr(""), description="Git password")
    git_update_period: float = Field(
        default=60, gt=0, description="Update period in seconds"
    )

    # Update hooks
    pre_update_command: str = Field(
        default="",
        description=(
            "Shell command run before restarting the application after an update. "
            "The working directory is the local folder."
        ),
    )
    pre_update_runner: str = Field(default="bash", description="Shell running the pre-update command")
    restart_command: str = Field(
        default="",
        description="Command run instead of restarting the managed process itself",
    )
    stop_timeout: float = Field(
        default=10, gt=0, description="Seconds to wait after SIGTERM before killing the process"
    )

    # Webhook
    webhook_port: int = Field(default=0, ge=0, le=65535, description="Webhook port, 0 disables it")
    webhook_token_header: str = Field(default="", description="Header carrying the webhook token")
    webhook_token_value: SecretStr = Field(
        default=SecretStr(""), description="Token value authenticating webhook requests"
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Accept only standard logging level names."""
        level = v.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {v!r}")
        return level

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def restart_argv(self) -> list[str]:
        """The restart command split into an argument vector.

        Raises ``ValueError`` when the command has unbalanced quotes.
        """
        if not self.restart_command.strip():
            return []
        return shlex.split(self.restart_command)


def load_settings(**overrides: Any) -> Settings:
    """Build settings from the environment, the dotenv file and explicit overrides.

    The dotenv file is taken from ``ENV_FILE`` (default ``.env``); a missing
    file is not an error. Overrides set to ``None`` are ignored.
    """
    env_file = os.environ.get("ENV_FILE") or DEFAULT_ENV_FILE
    values = {key: value for key, value in overrides.items() if value is not None}
    return Settings(_env_file=env_file, **values)
