"""Loading and validation of nudge-engine configuration files."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from nudge_engine.exceptions import ConfigError

CONFIG_ENV_VAR = "NUDGE_ENGINE_CONFIG"


class OrchestratorConfig(BaseModel):
    """Periods of the internal sweeps, in seconds."""

    reminder_check_seconds: float = Field(60.0, gt=0)
    scheduled_poll_seconds: float = Field(30.0, gt=0)
    proactive_check_seconds: Optional[float] = Field(
        None,
        gt=0,
        description="Escalation sweep period; disabled when unset.",
    )


class ReminderConfig(BaseModel):
    cooldown_minutes: int = Field(180, ge=0)


class DigestConfig(BaseModel):
    morning_hour: int = Field(8, ge=0, le=23)
    evening_hour: int = Field(18, ge=0, le=23)

    @model_validator(mode="after")
    def _ensure_order(self) -> "DigestConfig":
        if self.evening_hour <= self.morning_hour:
            raise ValueError("evening_hour must be later than morning_hour.")
        return self


class ResilienceConfig(BaseModel):
    """Circuit breaker and backoff defaults for external dependencies."""

    base_backoff_seconds: float = Field(30.0, ge=1.0)
    max_backoff_seconds: float = Field(30 * 60.0, ge=1.0)
    circuit_failure_threshold: int = Field(4, ge=2)
    circuit_open_seconds: float = Field(10 * 60.0, ge=10.0)
    jitter_ratio: float = Field(0.35, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _ensure_backoff_bounds(self) -> "ResilienceConfig":
        if self.max_backoff_seconds < self.base_backoff_seconds:
            raise ValueError("max_backoff_seconds must be >= base_backoff_seconds.")
        return self


class DeliveryConfig(BaseModel):
    max_retries: int = Field(2, ge=0)
    retry_base_delay_seconds: float = Field(0.25, ge=0.0)
    max_recent_failures: int = Field(50, ge=1)


class StoreConfig(BaseModel):
    max_notifications: int = Field(40, ge=1)
    max_events: int = Field(100, ge=1)
    snapshot_path: Optional[str] = None


class TelemetryConfig(BaseModel):
    log_level: str = Field("INFO")


class AppConfig(BaseModel):
    """Complete nudge-engine configuration."""

    timezone: str = Field("UTC")
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    reminders: ReminderConfig = Field(default_factory=ReminderConfig)
    digest: DigestConfig = Field(default_factory=DigestConfig)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return value

    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def resolve_config_path(path: Optional[Path] = None) -> Optional[Path]:
    """Return the configuration path from the argument or environment, if any."""
    if path is not None:
        return path
    env_value = os.getenv(CONFIG_ENV_VAR)
    return Path(env_value) if env_value else None


def load_app_config(path: Optional[Path] = None) -> AppConfig:
    """Load and validate configuration; defaults apply when no file is given."""
    config_path = resolve_config_path(path)
    if config_path is None:
        return AppConfig()
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found at {config_path}")

    try:
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Unable to read configuration: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in configuration: {exc}") from exc

    try:
        return AppConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(f"Configuration validation failed: {exc}") from exc


def save_app_config(config: AppConfig, path: Path) -> None:
    """Persist the configuration as JSON."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(config.model_dump(mode="json"), indent=2, sort_keys=True),
            encoding="utf-8",
        )
    except OSError as exc:
        raise ConfigError(f"Unable to write configuration: {exc}") from exc
