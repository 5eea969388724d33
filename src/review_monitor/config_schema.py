"""Monitor configuration schema."""

from __future__ import annotations

import json
import os
import re
import sys
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from review_monitor.classifier import DEFAULT_CI_ACCOUNT

USER_CONFIG_DIRNAME = "review-monitor"
CONFIG_PATH_ENV_VAR = "MONITOR_CONFIG_PATH"
_AGE_PATTERN = re.compile(r"^\d+[smhdwy]$")


class AbandonConfig(BaseModel):
    """Automatic abandon policy thresholds."""

    enabled: bool = Field(default=True)
    inactive_days: int = Field(default=730, ge=1)
    failing_ci_days: int = Field(default=365, ge=1)


class CommunityPatterns(BaseModel):
    """Repos and files that never need community review."""

    rejected_repos: list[str] = Field(default_factory=list)
    rejected_project_regex: list[str] = Field(default_factory=list)
    rejected_files: list[str] = Field(default_factory=list)
    rejected_file_regex: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Project name (or 'all') -> file path regexes",
    )

    @field_validator("rejected_project_regex")
    @classmethod
    def _validate_project_regex(cls, value: list[str]) -> list[str]:
        for pattern in value:
            _compile(pattern)
        return value

    @field_validator("rejected_file_regex")
    @classmethod
    def _validate_file_regex(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        for patterns in value.values():
            for pattern in patterns:
                _compile(pattern)
        return value


class CommunityPicksConfig(BaseModel):
    """How many community-review changes to suggest at once."""

    total: int = Field(default=5, ge=1)
    recent: int = Field(default=4, ge=0)


class MonitorConfig(BaseModel):
    """Validated monitor runtime configuration."""

    gerrit_url: str = Field(default="https://gerrit.openbmc.org")
    ci_account: str = Field(default=DEFAULT_CI_ACCOUNT)
    request_timeout_seconds: float = Field(default=30.0, gt=0.0)
    retry_delay_seconds: float = Field(default=60.0, ge=1.0)
    poll_interval_seconds: float = Field(default=300.0, ge=1.0)
    full_sync_interval_seconds: float = Field(default=86400.0, ge=60.0)
    incremental_lookback: str = Field(default="1h")
    abandon: AbandonConfig = Field(default_factory=AbandonConfig)
    community_patterns: CommunityPatterns = Field(default_factory=CommunityPatterns)
    community_picks: CommunityPicksConfig = Field(default_factory=CommunityPicksConfig)

    @field_validator("gerrit_url")
    @classmethod
    def _validate_gerrit_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"gerrit_url must be an http(s) URL: {value!r}")
        return value.rstrip("/")

    @field_validator("incremental_lookback")
    @classmethod
    def _validate_lookback(cls, value: str) -> str:
        if not _AGE_PATTERN.match(value):
            raise ValueError(
                f"incremental_lookback must look like '1h' or '30m', got {value!r}"
            )
        return value


def _compile(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"invalid regex {pattern!r}: {exc}") from exc


def default_user_config_dir() -> Path:
    """Resolve a cross-platform user config directory for monitor state."""
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home).expanduser() / USER_CONFIG_DIRNAME

    if os.name == "nt":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata).expanduser() / USER_CONFIG_DIRNAME
        return Path.home() / "AppData" / "Roaming" / USER_CONFIG_DIRNAME

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / USER_CONFIG_DIRNAME

    return Path.home() / ".config" / USER_CONFIG_DIRNAME


def resolve_config_path() -> Path:
    configured_path = os.environ.get(CONFIG_PATH_ENV_VAR)
    if configured_path:
        return Path(configured_path).expanduser()
    return default_user_config_dir() / "config.json"


def load_monitor_config(config_path: str | Path | None = None) -> MonitorConfig:
    """Load monitor config from a JSON file.

    Returns defaults when the file does not exist.
    Raises:
    - json.JSONDecodeError for malformed JSON.
    - ValueError when the top level is not an object.
    - pydantic ValidationError on invalid values.
    """
    path = Path(config_path) if config_path is not None else resolve_config_path()
    if not path.exists():
        return MonitorConfig()

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("monitor config must be a JSON object")
    return MonitorConfig.model_validate(payload)
