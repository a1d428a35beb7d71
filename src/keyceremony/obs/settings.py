"""Environment-driven observability settings."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class ObservabilitySettings(BaseSettings):
    """Logging and request-tracing configuration."""

    model_config = SettingsConfigDict(env_prefix="KEYCEREMONY_", extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: str = "%(asctime)s %(levelname)s %(name)s [%(trace_id)s] %(message)s"
    trace_header: str = "X-Trace-Id"
