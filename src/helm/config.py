"""Application configuration using environment variables."""

import tempfile
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Assistant CLI invocation
    claude_binary: str = Field(
        default="claude",
        validation_alias=AliasChoices("CLAUDE_BINARY", "claude_binary"),
    )
    claude_max_turns: int = Field(
        default=30,
        ge=1,
        validation_alias=AliasChoices("CLAUDE_MAX_TURNS", "claude_max_turns"),
    )
    # The CLI runs from the repository that hosts this web service so that
    # project-relative resources (CLAUDE.md, MCP config) resolve.
    claude_workdir: Path = Field(
        default_factory=lambda: PROJECT_ROOT.parent,
        validation_alias=AliasChoices("CLAUDE_WORKDIR", "claude_workdir"),
    )
    request_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        validation_alias=AliasChoices("CLAUDE_TIMEOUT", "request_timeout_seconds"),
    )
    post_exit_kill_delay_seconds: float = Field(
        default=0.5,
        ge=0,
        validation_alias=AliasChoices(
            "POST_EXIT_KILL_DELAY", "post_exit_kill_delay_seconds"
        ),
    )

    # Request limits
    max_message_length: int = Field(
        default=10_000,
        ge=1,
        validation_alias=AliasChoices("MAX_MESSAGE_LENGTH", "max_message_length"),
    )
    max_images: int = Field(
        default=10,
        ge=0,
        validation_alias=AliasChoices("MAX_IMAGES", "max_images"),
    )
    history_limit: int = Field(
        default=15,
        ge=0,
        validation_alias=AliasChoices("HISTORY_LIMIT", "history_limit"),
    )
    prompt_timezone: str = Field(
        default="America/Los_Angeles",
        validation_alias=AliasChoices("PROMPT_TIMEZONE", "prompt_timezone"),
    )

    # Temp image staging
    image_temp_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()),
        validation_alias=AliasChoices("IMAGE_TEMP_DIR", "image_temp_dir"),
    )
    image_file_prefix: str = Field(
        default="helm-upload",
        min_length=1,
        validation_alias=AliasChoices("IMAGE_FILE_PREFIX", "image_file_prefix"),
    )
    image_retention_hours: float = Field(
        default=1.0,
        ge=0,
        validation_alias=AliasChoices(
            "IMAGE_RETENTION_HOURS", "image_retention_hours"
        ),
    )
    image_cleanup_interval_seconds: int = Field(
        default=600,
        ge=1,
        validation_alias=AliasChoices(
            "IMAGE_CLEANUP_INTERVAL", "image_cleanup_interval_seconds"
        ),
    )

    @property
    def image_retention(self) -> timedelta:
        return timedelta(hours=self.image_retention_hours)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()


__all__ = ["PROJECT_ROOT", "Settings", "get_settings"]
