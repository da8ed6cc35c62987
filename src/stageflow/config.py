"""Engine settings read from STAGEFLOW_* environment variables.

Environment Variables:
    STAGEFLOW_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default: INFO)
    STAGEFLOW_FAIL_FAST: Default fail-fast for parallel groups that do not
        declare it (default: false)
    STAGEFLOW_COMMAND_TIMEOUT: Default command timeout in seconds
        (default: 3600, clamped to 1-86400)
    STAGEFLOW_GATE_POLL_INTERVAL: Default gate polling interval in seconds
        (default: 5, clamped to 0.01-600)
    STAGEFLOW_OUTPUT_LIMIT: Characters of command output kept per step
        (default: 4000, clamped to 0-1000000)
    STAGEFLOW_SECRET_PREFIX: Prefix of secret environment variables
        (default: STAGEFLOW_SECRET_)
    STAGEFLOW_WEBHOOK_URL: Default webhook URL for notifications (optional)
"""

from __future__ import annotations

import logging
import os

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_SECRET_PREFIX = "STAGEFLOW_SECRET_"

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_float(name: str, default: float, lo: float, hi: float) -> float:
    """Read a float variable, clamped to [lo, hi]; invalid values fall back to default."""
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        logger.warning(f"Invalid {name}={os.getenv(name)!r}, using {default}")
        return default
    return max(lo, min(hi, value))


def get_log_level() -> tuple[str, bool]:
    """Log level name from STAGEFLOW_LOG_LEVEL and whether the raw value was valid."""
    log_level_str = os.getenv("STAGEFLOW_LOG_LEVEL", "INFO").upper()
    if log_level_str not in VALID_LOG_LEVELS:
        return "INFO", False
    return log_level_str, True


class Settings(BaseModel):
    """Run-wide defaults; per-pipeline options override them."""

    log_level: str = Field(default="INFO")
    fail_fast: bool = Field(default=False, description="Default for parallel groups")
    command_timeout: float = Field(default=3600.0, gt=0)
    gate_poll_interval: float = Field(default=5.0, gt=0)
    output_limit: int = Field(default=4000, ge=0)
    secret_prefix: str = Field(default=DEFAULT_SECRET_PREFIX)
    webhook_url: str | None = None
    workspace: str = Field(default="", description="Default working directory for commands")

    @classmethod
    def from_env(cls) -> Settings:
        log_level, _ = get_log_level()
        return cls(
            log_level=log_level,
            fail_fast=_get_bool("STAGEFLOW_FAIL_FAST", False),
            command_timeout=_get_float("STAGEFLOW_COMMAND_TIMEOUT", 3600.0, 1.0, 86400.0),
            gate_poll_interval=_get_float("STAGEFLOW_GATE_POLL_INTERVAL", 5.0, 0.01, 600.0),
            output_limit=int(_get_float("STAGEFLOW_OUTPUT_LIMIT", 4000, 0, 1_000_000)),
            secret_prefix=os.getenv("STAGEFLOW_SECRET_PREFIX", DEFAULT_SECRET_PREFIX),
            webhook_url=os.getenv("STAGEFLOW_WEBHOOK_URL") or None,
        )


__all__ = ["DEFAULT_SECRET_PREFIX", "Settings", "VALID_LOG_LEVELS", "get_log_level"]
