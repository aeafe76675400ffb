"""Settings loaded from environment variables."""

import logging
import os
from typing import Mapping

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from startup_pulse.services.batch_sentiment import BATCH_PROFILES, BatchSizeLimits
from startup_pulse.services.durations import ConfigurationError

DEFAULT_MODEL_IDS = (
    "anthropic.claude-3-5-sonnet-20241022-v2:0",
    "mistral.mistral-large-2407-v1:0",
)

LOG_LEVELS = ("debug", "info", "warning", "error")


class Settings(BaseModel):
    """Runtime configuration."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    redis_url: str = "redis://localhost:6379"
    inference_base_url: str = "http://localhost:8080"
    model_ids: tuple[str, ...] = DEFAULT_MODEL_IDS
    connector_base_url: str = "http://localhost:8090"
    rate_limit_per_second: int = 1
    rate_limit_per_minute: int = 30
    rate_limit_max_retries: int = 3
    rate_limit_retry_delay: float = 2.0
    rate_limit_backoff: float = 2.0
    inference_timeout: float = 60.0
    batch_profile: str = "standard"
    log_dir: str = "logs"
    log_file: str = "startup_pulse.log"
    log_level: str = "info"
    log_max_bytes: int = 5 * 1024 * 1024
    log_backup_count: int = 7

    @field_validator("model_ids", mode="before")
    @classmethod
    def split_model_ids(cls, v):
        if isinstance(v, str):
            v = [item.strip() for item in v.split(",") if item.strip()]
        if not v:
            raise ValueError("at least one model id is required")
        return tuple(v)

    @field_validator("rate_limit_per_second", "rate_limit_per_minute")
    @classmethod
    def positive_rate(cls, v: int) -> int:
        if v < 1:
            raise ValueError("rate limits must be at least 1")
        return v

    @field_validator("rate_limit_max_retries")
    @classmethod
    def non_negative_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("rate_limit_max_retries must be non-negative")
        return v

    @field_validator("rate_limit_retry_delay", "inference_timeout")
    @classmethod
    def positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("rate_limit_backoff")
    @classmethod
    def backoff_at_least_one(cls, v: float) -> float:
        if v < 1:
            raise ValueError("rate_limit_backoff must be >= 1")
        return v

    @field_validator("batch_profile")
    @classmethod
    def known_profile(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in BATCH_PROFILES:
            raise ValueError(f"batch_profile must be one of {sorted(BATCH_PROFILES)}")
        return v

    @field_validator("log_max_bytes", "log_backup_count")
    @classmethod
    def non_negative_log_limits(cls, v: int) -> int:
        if v < 0:
            raise ValueError("log rotation limits must be non-negative")
        return v

    @field_validator("log_level")
    @classmethod
    def known_level(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {list(LOG_LEVELS)}")
        return v

    @property
    def batch_limits(self) -> BatchSizeLimits:
        return BATCH_PROFILES[self.batch_profile]

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level.upper())

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from the environment. Raises ConfigurationError."""
        environ = os.environ if environ is None else environ
        values = {
            field: environ[field.upper()]
            for field in cls.model_fields
            if environ.get(field.upper())
        }
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
