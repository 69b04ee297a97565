"""Application configuration for the tile edge service."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class EdgeSettings(BaseSettings):
    """Runtime settings for the negotiation engine and its HTTP shell."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    maps_root: str = env_field("maps", "TILEGATE_MAPS_ROOT")
    entry_document: str = env_field("index.html", "TILEGATE_ENTRY_DOCUMENT")
    cache_max_age_seconds: int = env_field(86400, "TILEGATE_CACHE_MAX_AGE")
    preflight_max_age_seconds: int = env_field(86400, "TILEGATE_PREFLIGHT_MAX_AGE")

    live_origin: Optional[str] = env_field(None, "TILEGATE_LIVE_ORIGIN")
    live_cache_seconds: int = env_field(5, "TILEGATE_LIVE_CACHE_SECONDS")
    live_timeout_seconds: float = env_field(5.0, "TILEGATE_LIVE_TIMEOUT")

    storage_path: Path = env_field(Path("./web"), "TILEGATE_STORAGE_PATH")
    s3_bucket: Optional[str] = env_field(None, "TILEGATE_S3_BUCKET")
    s3_endpoint_url: Optional[str] = env_field(None, "TILEGATE_S3_ENDPOINT")
    s3_region: Optional[str] = env_field(None, "TILEGATE_S3_REGION")
    s3_max_attempts: int = env_field(3, "TILEGATE_S3_MAX_ATTEMPTS")
    s3_circuit_breaker_failures: int = env_field(5, "TILEGATE_S3_CIRCUIT_FAILURES")
    s3_circuit_breaker_reset_seconds: float = env_field(30.0, "TILEGATE_S3_CIRCUIT_RESET")

    list_max_keys: int = env_field(1000, "TILEGATE_LIST_MAX_KEYS")
    operator_token: Optional[SecretStr] = env_field(None, "TILEGATE_OPERATOR_TOKEN")

    bind_host: str = env_field("127.0.0.1", "TILEGATE_BIND_HOST")
    bind_port: int = env_field(8100, "TILEGATE_BIND_PORT")

    log_level: str = env_field("INFO", "TILEGATE_LOG_LEVEL")
    log_format: str = env_field("json", "TILEGATE_LOG_FORMAT")
    otel_exporter_endpoint: Optional[str] = env_field(None, "TILEGATE_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "TILEGATE_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "TILEGATE_OTEL_SAMPLER_RATIO")

    @field_validator("maps_root", mode="before")
    @classmethod
    def _strip_maps_root(cls, value):
        if isinstance(value, str):
            return value.strip().strip("/")
        return value

    @field_validator("live_origin", mode="before")
    @classmethod
    def _normalize_live_origin(cls, value):
        if isinstance(value, str):
            value = value.strip().rstrip("/")
            return value or None
        return value

    @field_validator("log_format", mode="before")
    @classmethod
    def _lower_log_format(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @property
    def live_enabled(self) -> bool:
        return self.live_origin is not None

    @property
    def operator_secret(self) -> Optional[str]:
        return self.operator_token.get_secret_value() if self.operator_token else None
