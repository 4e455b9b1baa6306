from functools import lru_cache
from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


ENV_PATH = Path(__file__).resolve().parents[2] / ".env"

MIN_CACHE_TTL_SECONDS = 30


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=ENV_PATH, env_file_encoding="utf-8", extra="ignore")

    # App
    env: str = "dev"
    service_name: str = "registration-bridge"
    log_level: str = "INFO"

    # Remote customer store (Shopify Admin API)
    shop: str | None = None  # e.g. example.myshopify.com
    admin_token: SecretStr | None = None
    shopify_api_version: str = "2025-07"

    # Outbound calls
    http_timeout_seconds: float = 10.0
    store_retry_extra_attempts: int = 1
    store_retry_base_delay_seconds: float = 0.5

    # Upper bound for one /register call, retries included
    request_deadline_seconds: float = 25.0

    # Site directory
    sheet_csv_url: str | None = None
    cache_ttl_seconds: int = 300
    site_directory_fallback_path: Path | None = None

    # Registration policy
    return_new_password: bool = True
    default_phone_country_code: str = "1"

    # Telemetry (tracing is off unless an endpoint is configured)
    otlp_endpoint: str | None = None

    @property
    def directory_ttl_seconds(self) -> int:
        return max(MIN_CACHE_TTL_SECONDS, self.cache_ttl_seconds)

    def missing_store_config(self) -> list[str]:
        missing = []
        if not (self.shop or "").strip():
            missing.append("SHOP")
        if self.admin_token is None or not self.admin_token.get_secret_value().strip():
            missing.append("ADMIN_TOKEN")
        return missing


@lru_cache
def get_settings() -> Settings:
    return Settings()
