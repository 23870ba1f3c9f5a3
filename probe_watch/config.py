"""Configuration management for probe-watch."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from probe_watch.models import EndpointCheck, Job
from probe_watch.probe import DEFAULT_USER_AGENT, ClientSettings
from probe_watch.runner import RunSettings
from probe_watch.sinks import TelegramConfig


DEFAULT_CONFIG_PATH = Path(__file__).with_name("config.yaml")


class ConfigError(ValueError):
    """Configuration could not be read or is invalid."""


class CheckConfig(BaseModel):
    """One endpoint to probe."""
    url: str = Field(description="Absolute URL to GET")
    name: str = Field(description="Component label used in alerts")


class JobConfig(BaseModel):
    """An ordered group of checks for one project."""
    name: str = Field(description="Project label used in alerts")
    max_redirects: int = Field(default=0, ge=0, description="Redirects followed before the probe fails")
    checks: list[CheckConfig] = Field(default_factory=list, description="Checks, in execution order")


class TelegramSettings(BaseModel):
    """Optional Telegram alert channel."""
    bot_token: Optional[str] = Field(default=None, description="Bot API token")
    chat_id: Optional[str] = Field(default=None, description="Chat receiving alerts")

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)


class WatcherConfig(BaseModel):
    """Main configuration for probe-watch."""

    log_level: str = Field(default="INFO", description="Logging level")

    # Probe policy
    slow_threshold_ms: int = Field(default=500, ge=0, description="200 responses slower than this raise a warning")
    request_timeout_seconds: float = Field(default=30.0, gt=0, le=999, description="Per request timeout")
    pool_idle_timeout_seconds: float = Field(default=5.0, ge=0, description="Idle keep-alive connection lifetime")
    https_only: bool = Field(default=True, description="Reject plaintext HTTP targets")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header sent with probes")

    # Pacing
    inter_check_delay_seconds: float = Field(default=1.0, ge=0, description="Pause between checks of one job")
    interval_seconds: int = Field(default=0, ge=0, description="Seconds between runs; 0 runs once")

    # Alert channels
    desktop_notifications: bool = Field(default=True, description="Show desktop popups via notify-send")
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)

    jobs: list[JobConfig] = Field(default_factory=list, description="Jobs to run concurrently")

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return str(value).upper()

    def to_jobs(self) -> list[Job]:
        return [
            Job(
                name=job.name,
                checks=tuple(EndpointCheck(url=c.url, name=c.name) for c in job.checks),
                max_redirects=job.max_redirects,
            )
            for job in self.jobs
        ]

    def client_settings(self) -> ClientSettings:
        return ClientSettings(
            request_timeout=self.request_timeout_seconds,
            pool_idle_timeout=self.pool_idle_timeout_seconds,
            https_only=self.https_only,
            user_agent=self.user_agent,
        )

    def run_settings(self) -> RunSettings:
        return RunSettings(
            client=self.client_settings(),
            slow_threshold=self.slow_threshold_ms / 1000.0,
            inter_check_delay=self.inter_check_delay_seconds,
        )

    def telegram_config(self) -> TelegramConfig | None:
        if not self.telegram.configured:
            return None
        return TelegramConfig(bot_token=str(self.telegram.bot_token), chat_id=str(self.telegram.chat_id))


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config YAML must be a mapping: {path}")
    return data


def load_config(config_path: Optional[str | Path] = None) -> WatcherConfig:
    """Load configuration from file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("PROBE_WATCH_CONFIG") or DEFAULT_CONFIG_PATH

    config_data = _read_yaml(Path(config_path))

    env_overrides = {
        "log_level": os.getenv("LOG_LEVEL"),
        "slow_threshold_ms": os.getenv("PROBE_WATCH_SLOW_THRESHOLD_MS"),
        "request_timeout_seconds": os.getenv("PROBE_WATCH_TIMEOUT_SECONDS"),
        "interval_seconds": os.getenv("PROBE_WATCH_INTERVAL_SECONDS"),
    }
    for key, value in env_overrides.items():
        if value is not None:
            config_data[key] = value

    telegram = dict(config_data.get("telegram") or {})
    if os.getenv("TELEGRAM_BOT_TOKEN"):
        telegram["bot_token"] = os.getenv("TELEGRAM_BOT_TOKEN")
    if os.getenv("TELEGRAM_CHAT_ID"):
        telegram["chat_id"] = os.getenv("TELEGRAM_CHAT_ID")
    if telegram:
        config_data["telegram"] = telegram

    try:
        return WatcherConfig(**config_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {config_path}: {e}") from e
