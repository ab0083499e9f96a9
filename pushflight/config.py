"""Configuration management with Pydantic Settings + optional YAML."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pushflight.utils.platform import get_config_dir, get_data_dir


class WebhookConfig(BaseModel):
    bind: str = "0.0.0.0"
    port: int = 5000
    path: str = "/"
    secret: str = ""
    source_branch: str = "master"
    signature_header: str = "X-Hub-Signature"

    @property
    def expected_ref(self) -> str:
        return f"refs/heads/{self.source_branch}"


class JobConfig(BaseModel):
    """Shell commands making up one rebuild/publish run, executed in order."""
    commands: list[str] = Field(default_factory=list)
    working_dir: str = ""
    timeout: int = 0  # seconds per command, 0 = no limit
    dry_run: bool = False


class RollingLogConfig(BaseModel):
    path: str = ""
    max_entries: int = 1000


class IncidentConfig(BaseModel):
    access_token: str = ""
    repository: str = ""
    issue_number: int = 0
    api_url: str = "https://api.github.com"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PUSHFLIGHT_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    job: JobConfig = Field(default_factory=JobConfig)
    rolling_log: RollingLogConfig = Field(default_factory=RollingLogConfig)
    incident: IncidentConfig = Field(default_factory=IncidentConfig)
    data_dir: str = ""
    log_level: str = "INFO"
    log_json: bool = False

    def get_data_dir(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir)
        return get_data_dir()

    def get_rolling_log_path(self) -> Path:
        if self.rolling_log.path:
            return Path(self.rolling_log.path)
        return self.get_data_dir() / "webhook-logs.db"


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings from env vars, optionally overlaying a YAML config."""
    yaml_data: dict[str, Any] = {}

    if config_path is None:
        config_path = os.environ.get("PUSHFLIGHT_CONFIG")
    if config_path is None:
        default = get_config_dir() / "config.yaml"
        if default.exists():
            config_path = default

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

    # YAML values are passed as init kwargs, which pydantic-settings ranks
    # above env vars; drop the YAML value wherever an env var is set.
    return Settings(**_without_env_overrides(yaml_data))


def _without_env_overrides(data: dict[str, Any], prefix: str = "PUSHFLIGHT_") -> dict[str, Any]:
    env_keys = {k.upper() for k in os.environ}
    result: dict[str, Any] = {}
    for key, value in data.items():
        env_key = f"{prefix}{key}".upper()
        if env_key in env_keys:
            continue
        if isinstance(value, dict):
            result[key] = _without_env_overrides(value, f"{env_key}__")
        else:
            result[key] = value
    return result
