from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", env_prefix="EXAM_")

    app_name: str = "Exam Session Engine"
    env: str = "dev"
    cors_origins: str = "http://localhost:3000"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    storage_backend: Literal["inmemory", "mongo"] = "inmemory"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "exam_engine"
    anchor_collection: str = "session_anchors"

    # Countdown
    clock_tick_seconds: float = Field(default=1.0, gt=0)
    clock_autostart: bool = True
    time_warning_seconds: int = Field(default=600, ge=0)
    time_critical_seconds: int = Field(default=300, ge=0)

    # Observability (OpenTelemetry)
    observability_enabled: bool = True
    otel_service_name: str = "exam-session-engine"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_console: bool = False
    otel_sample_rate: float = Field(default=0.1, ge=0, le=1)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        if self.time_critical_seconds > self.time_warning_seconds:
            raise ValueError("time_critical_seconds must not exceed time_warning_seconds")
        return self

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
