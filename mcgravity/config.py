"""Configuration management with Pydantic Settings + optional YAML."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from mcgravity.core.events import DEFAULT_QUEUE_SIZE
from mcgravity.core.retry import RetryConfig
from mcgravity.executors import Model
from mcgravity.storage.paths import WorkspacePaths
from mcgravity.utils.platform import get_config_dir


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=100, ge=0)
    base_interval: float = Field(default=10.0, ge=0)
    interval_increment: float = Field(default=10.0, ge=0)

    def to_retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.max_attempts,
            base_interval=self.base_interval,
            interval_increment=self.interval_increment,
        )


class FlowSettings(BaseModel):
    planning_model: Model = Model.CODEX
    execution_model: Model = Model.CODEX
    max_iterations: int | None = Field(default=None, ge=1)
    summarize_completions: bool = False
    event_queue_size: int = Field(default=DEFAULT_QUEUE_SIZE, ge=1)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MCGRAVITY_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    retry: RetrySettings = Field(default_factory=RetrySettings)
    flow: FlowSettings = Field(default_factory=FlowSettings)
    root_dir: str = ""
    log_level: str = "INFO"
    log_json: bool = False

    def get_root_dir(self) -> Path:
        if self.root_dir:
            return Path(self.root_dir).expanduser()
        return Path.cwd()

    def workspace_paths(self) -> WorkspacePaths:
        return WorkspacePaths(self.get_root_dir())


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings from env vars, optionally overlaying a YAML config."""
    yaml_data: dict[str, Any] = {}

    if config_path is None:
        config_path = os.environ.get("MCGRAVITY_CONFIG")
    if config_path is None:
        default = get_config_dir() / "config.yaml"
        if default.exists():
            config_path = default

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

    return Settings(**yaml_data)
