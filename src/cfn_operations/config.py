"""Configuration management for CloudFormation operations."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class PollingSettings(BaseModel):
    """Cadence and retry budget for driving an operation to completion.

    Poll intervals grow exponentially from ``min_interval_seconds`` while the
    remote system reports no progress and are capped at
    ``max_interval_seconds``. Transient failures (transport errors and
    throttling) are retried until either ``max_transient_retries`` consecutive
    attempts or ``retry_budget_seconds`` of wall time have been spent.

    A settled status the gateway has not tied to the running operation is
    accepted after ``max_unacknowledged_polls`` polls if it belongs to the
    operation's action.
    """

    min_interval_seconds: float = Field(default=1.0, ge=0)
    max_interval_seconds: float = Field(default=30.0, ge=0)
    max_transient_retries: int = Field(default=8, ge=0, le=100)
    retry_budget_seconds: float = Field(default=900.0, ge=0)
    throttle_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    jitter_ratio: float = Field(default=0.25, ge=0, le=1.0)
    max_event_pages: int = Field(default=100, ge=1)
    change_set_poll_seconds: float = Field(default=1.0, ge=0)
    max_unacknowledged_polls: int = Field(default=30, ge=1)

    @model_validator(mode="after")
    def _validate_interval_bounds(self) -> "PollingSettings":
        if self.min_interval_seconds > self.max_interval_seconds:
            raise ValueError("min_interval_seconds must not exceed max_interval_seconds")
        return self


class AWSSettings(BaseModel):
    default_region: str | None = Field(default=None)
    default_profile: str | None = Field(default=None)
    sdk_timeout_seconds: int = Field(default=30, ge=1, le=300)
    sdk_max_attempts: int = Field(default=3, ge=1, le=20)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)


ENV_KEYS = {
    "log_level": "CFN_OPS_LOG_LEVEL",
    "log_file": "CFN_OPS_LOG_FILE",
    "poll_min": "CFN_OPS_POLL_MIN_SECONDS",
    "poll_max": "CFN_OPS_POLL_MAX_SECONDS",
    "max_transient_retries": "CFN_OPS_MAX_TRANSIENT_RETRIES",
    "retry_budget": "CFN_OPS_RETRY_BUDGET_SECONDS",
    "throttle_multiplier": "CFN_OPS_THROTTLE_MULTIPLIER",
    "jitter_ratio": "CFN_OPS_JITTER_RATIO",
    "max_event_pages": "CFN_OPS_MAX_EVENT_PAGES",
    "change_set_poll": "CFN_OPS_CHANGE_SET_POLL_SECONDS",
    "max_unacknowledged_polls": "CFN_OPS_MAX_UNACKNOWLEDGED_POLLS",
    "aws_region": "AWS_DEFAULT_REGION",
    "aws_profile": "AWS_PROFILE",
    "sdk_timeout": "CFN_OPS_SDK_TIMEOUT_SECONDS",
    "sdk_max_attempts": "CFN_OPS_SDK_MAX_ATTEMPTS",
}


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    polling = PollingSettings()
    aws = AWSSettings()

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": os.getenv(ENV_KEYS["log_file"]) or None,
        },
        "polling": {
            "min_interval_seconds": _env_float(
                ENV_KEYS["poll_min"], polling.min_interval_seconds
            ),
            "max_interval_seconds": _env_float(
                ENV_KEYS["poll_max"], polling.max_interval_seconds
            ),
            "max_transient_retries": _env_int(
                ENV_KEYS["max_transient_retries"], polling.max_transient_retries
            ),
            "retry_budget_seconds": _env_float(
                ENV_KEYS["retry_budget"], polling.retry_budget_seconds
            ),
            "throttle_multiplier": _env_float(
                ENV_KEYS["throttle_multiplier"], polling.throttle_multiplier
            ),
            "jitter_ratio": _env_float(ENV_KEYS["jitter_ratio"], polling.jitter_ratio),
            "max_event_pages": _env_int(ENV_KEYS["max_event_pages"], polling.max_event_pages),
            "change_set_poll_seconds": _env_float(
                ENV_KEYS["change_set_poll"], polling.change_set_poll_seconds
            ),
            "max_unacknowledged_polls": _env_int(
                ENV_KEYS["max_unacknowledged_polls"], polling.max_unacknowledged_polls
            ),
        },
        "aws": {
            "default_region": os.getenv("AWS_REGION") or os.getenv(ENV_KEYS["aws_region"]),
            "default_profile": os.getenv(ENV_KEYS["aws_profile"]),
            "sdk_timeout_seconds": _env_int(ENV_KEYS["sdk_timeout"], aws.sdk_timeout_seconds),
            "sdk_max_attempts": _env_int(ENV_KEYS["sdk_max_attempts"], aws.sdk_max_attempts),
        },
    }

    try:
        return Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc
