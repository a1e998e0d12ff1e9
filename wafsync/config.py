"""Configuration settings for wafsync."""

import json
import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import RuleMode
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

VERCEL_PROJECT_FILE = Path(".vercel") / "project.json"


class Settings(BaseSettings):
    """Settings loaded from environment variables (and ``.env``).

    Instances are immutable; derive a modified copy with ``model_copy``.
    """

    # API configuration
    api_base_url: str = Field(default="https://api.vercel.com")
    vercel_token: str = Field(default="")
    project_id: str = Field(default="")
    team_id: str = Field(default="")
    team_slug: str = Field(default="")
    request_timeout: float = Field(default=30.0, gt=0)

    # Rule settings
    rule_mode: str = Field(default="")
    rule_hostname: str = Field(default="")
    max_ips_per_condition: int = Field(default=75, gt=0)
    skip_optimize: bool = Field(default=False)
    skip_removal: bool = Field(default=False)

    # Execution
    dry_run: bool = Field(default=False)

    # Pacing and retries
    rate_limit_delay_ms: int = Field(default=800, ge=0)
    rate_limit_backoff_sec: float = Field(default=60.0, ge=0)
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=2.0, ge=0)
    retry_max_delay: float = Field(default=60.0, ge=0)
    retry_jitter: float = Field(default=4.0, ge=0)

    # Purge tuning
    purge_delay: float = Field(default=1.0, ge=0)
    purge_retries: int = Field(default=5, ge=1)
    purge_disable_first: bool = Field(default=False)
    purge_reverse: bool = Field(default=False)

    # Backups
    backup_dir: str = Field(default="./backups")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",
        extra="ignore",
        frozen=True,
    )

    @field_validator("rule_mode")
    @classmethod
    def _check_rule_mode(cls, value: str) -> str:
        value = value.strip().lower()
        if value and value not in {mode.value for mode in RuleMode}:
            raise ValueError(f"RULE_MODE must be 'deny' or 'bypass', got: {value}")
        return value

    @property
    def mode(self) -> RuleMode | None:
        return RuleMode(self.rule_mode) if self.rule_mode else None

    @property
    def rate_limit_delay(self) -> float:
        return self.rate_limit_delay_ms / 1000

    def retry_policy(self, max_attempts: int | None = None) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=max_attempts or self.max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            rate_limit_backoff=self.rate_limit_backoff_sec,
            jitter=self.retry_jitter,
        )

    def with_detected_project(self, start_dir: str | Path = ".") -> "Settings":
        """Fill PROJECT_ID / TEAM_ID from ``.vercel/project.json`` when unset."""
        if self.project_id and self.team_id:
            return self

        detected = find_vercel_project(start_dir)
        if not detected:
            return self

        updates = {}
        if not self.project_id and detected.get("projectId"):
            updates["project_id"] = detected["projectId"]
            logger.info(f"Auto-detected PROJECT_ID: {detected['projectId']}")
        if not self.team_id and detected.get("orgId"):
            updates["team_id"] = detected["orgId"]
            logger.info(f"Auto-detected TEAM_ID: {detected['orgId']}")
        return self.model_copy(update=updates) if updates else self


def locate_vercel_project(start_dir: str | Path = ".") -> Path | None:
    """Return the nearest ``.vercel/project.json`` at or above ``start_dir``."""
    directory = Path(start_dir).resolve()
    for candidate in (directory, *directory.parents):
        project_file = candidate / VERCEL_PROJECT_FILE
        if project_file.is_file():
            logger.debug(f"Found Vercel config: {project_file}")
            return project_file
    return None


def find_vercel_project(start_dir: str | Path = ".") -> dict | None:
    """Search ``start_dir`` and its parents for ``.vercel/project.json``.

    Returns:
        Parsed project file, or None if none was found or it is unreadable
    """
    project_file = locate_vercel_project(start_dir)
    if project_file is None:
        return None
    try:
        with open(project_file, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read {project_file}: {e}")
        return None
