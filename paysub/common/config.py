"""Central environment-driven settings for the billing service.

The process loads this once at startup. Behavior is controlled by environment
variables (see `.env.example`). A missing gateway credential is a fatal
configuration error raised here, never a per-request failure.
"""

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "paysub"
    log_level: str = "INFO"
    database_url: str
    api_key: str
    gateway_backend: Literal["http", "memory"] = "http"
    gateway_base_url: str = "https://api.mercadopago.com"
    gateway_access_token: str = ""
    gateway_timeout_seconds: float = 10.0
    gateway_notification_url: str | None = None
    gateway_back_url: str | None = None
    gateway_statement_descriptor: str = "PAYSUB"
    webhook_secret: str
    cache_backend: Literal["memory", "redis", "none"] = "memory"
    cache_max_entries: int = 1024
    cache_ttl_seconds: int = 300
    redis_url: str = "redis://redis:6379/0"
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    default_currency: str = "BRL"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @model_validator(mode="after")
    def _require_gateway_credential(self) -> "CommonSettings":
        if self.gateway_backend == "http" and not self.gateway_access_token.strip():
            raise ValueError("GATEWAY_ACCESS_TOKEN must be set when GATEWAY_BACKEND=http")
        if not self.webhook_secret.strip():
            raise ValueError("WEBHOOK_SECRET must not be empty")
        return self


settings = CommonSettings()
