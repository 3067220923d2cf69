"""Dispatcher configuration using pydantic-settings.

This module defines the DispatcherSettings class that reads configuration
from environment variables with the DISPATCHER_ prefix (and an optional
``.env`` file). CLI options are applied on top as overrides through
``get_settings``.

The GitHub token additionally falls back to the conventional GITHUB_TOKEN
and GH_TOKEN variables.
"""

from pathlib import Path
from typing import Annotated, Any, Dict, List

import structlog
from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


logger = structlog.get_logger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class DispatcherSettings(BaseSettings):
    """Issue dispatcher configuration from environment variables.

    All environment variables are prefixed with DISPATCHER_
    (e.g., DISPATCHER_OWNER).

    Required fields:
    - owner: Repository owner (user or organization)
    - repo: Repository name
    - assignee: Login whose assigned issues are processed
    """

    model_config = SettingsConfigDict(
        env_prefix="DISPATCHER_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    owner: str

    repo: str

    assignee: str

    github_token: str = Field(
        default="",
        validation_alias=AliasChoices(
            "DISPATCHER_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN"
        ),
    )

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    base_branch: str = "main"

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------
    poll_interval_seconds: float = 60

    processing_interval_seconds: float = 5.0

    status_interval_seconds: float = 30.0

    # In-step retries for transient agent and discovery failures
    max_retries: int = 3

    retry_base_delay_seconds: float = 2.0

    # Pause before retrying an issue the agent was throttled on
    rate_limit_retry_delay_seconds: float = 300

    # -------------------------------------------------------------------------
    # Working tree and state
    # -------------------------------------------------------------------------
    working_directory: Path = Path(".")

    # Relative paths are resolved against working_directory
    state_directory: Path = Path(".claude-state")

    # -------------------------------------------------------------------------
    # Claude Code CLI
    # -------------------------------------------------------------------------
    claude_cli_path: str = "claude"

    claude_timeout_seconds: float = 300

    # Comma-separated in the environment
    allowed_tools: Annotated[List[str], NoDecode] = Field(default_factory=list)

    disallowed_tools: Annotated[List[str], NoDecode] = Field(default_factory=list)

    dangerously_skip_permissions: bool = False

    bash_default_timeout_ms: int = 300000

    bash_max_timeout_ms: int = 600000

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = "INFO"

    log_json: bool = False

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("owner", "repo", "assignee")
    @classmethod
    def validate_not_empty(cls, v: str, info: ValidationInfo) -> str:
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        return v.strip()

    @field_validator("github_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate that the API URL has an http(s) scheme."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("github_base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("base_branch")
    @classmethod
    def validate_base_branch(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("base_branch cannot be empty")
        return v.strip()

    @field_validator(
        "poll_interval_seconds",
        "processing_interval_seconds",
        "status_interval_seconds",
        "claude_timeout_seconds",
    )
    @classmethod
    def validate_positive(cls, v: float, info: ValidationInfo) -> float:
        """Validate that intervals and timeouts are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_retries must be at least 1")
        return v

    @field_validator("retry_base_delay_seconds", "rate_limit_retry_delay_seconds")
    @classmethod
    def validate_retry_delay(cls, v: float, info: ValidationInfo) -> float:
        if v < 0:
            raise ValueError(f"{info.field_name} cannot be negative")
        return v

    @field_validator("allowed_tools", "disallowed_tools", mode="before")
    @classmethod
    def split_tool_list(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [tool.strip() for tool in v.split(",") if tool.strip()]
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def resolved_state_directory(self) -> Path:
        """State directory, resolved against the working directory."""
        if self.state_directory.is_absolute():
            return self.state_directory
        return self.working_directory / self.state_directory

    def redacted(self) -> Dict[str, Any]:
        """Settings as a dict safe to log (token masked)."""
        values = self.model_dump(mode="json")
        values["github_token"] = "***" if self.github_token else ""
        return values


def get_settings(**overrides: Any) -> DispatcherSettings:
    """Create DispatcherSettings from the environment plus overrides.

    Overrides whose value is None are ignored, so unset CLI options fall
    back to the environment.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    return DispatcherSettings(**values)


def log_configuration(settings: DispatcherSettings) -> None:
    logger.info("Dispatcher configuration", **settings.redacted())
