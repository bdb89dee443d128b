"""Configuration for the application."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.engine.domain.time import TimeDelta


class EngineConfig(BaseSettings):
    """Operational parameters of the rule evaluation engine."""

    model_config = SettingsConfigDict(env_prefix="ENGINE_", env_file=".env", extra="ignore")

    idle_timeout: TimeDelta = Field(
        default=TimeDelta("30m"), description="Retire an entity after this long without new samples"
    )
    key_completion_timeout: TimeDelta = Field(
        default=TimeDelta("30s"), description="How long a field waits for its entity key to become complete"
    )
    retirement_interval: TimeDelta = Field(
        default=TimeDelta("1m"), description="How often idle entities are looked for"
    )
    default_retention: TimeDelta = Field(
        default=TimeDelta("5m"), description="Window retention for fields no ranged predicate references"
    )
    max_pending_per_context: int = Field(
        default=1000, ge=1, description="Maximum fields buffered per context while waiting for key fields"
    )
    rules_file: str = Field(default="./rules.json", description="JSON file the default rule loader reads")
    status_sink: Literal["memory", "csv"] = Field(default="memory", description="Where statuses are emitted")
    status_csv_path: str = Field(default="./statuses.csv", description="CSV path when status_sink is csv")
    status_csv_buffer_size: int = Field(default=100, ge=1, description="Statuses buffered before a CSV flush")


class LoggingConfig(BaseSettings):
    """Configuration for loguru sinks."""

    model_config = SettingsConfigDict(env_prefix="LOG_", env_file=".env", extra="ignore")

    level: str = Field(default="INFO", description="Console log level")
    file: str | None = Field(default=None, description="Optional log file path")
    rotation: str = Field(default="100 MB", description="Log file rotation threshold")
    retention: str = Field(default="30 days", description="Log file retention")


class AppConfig(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    engine: EngineConfig = Field(default_factory=EngineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
