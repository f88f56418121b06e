"""
VDF Configuration Management

Pydantic Settings: loads from .env, validates all configuration at startup.
Detector constants (gates, ramps, weights) live in the engine modules; this
holds the service-level tunables.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="VDF_",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Core ──
    app_env: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    # ── Alpaca (minute bars) ──
    alpaca_api_key: str = ""
    alpaca_secret_key: str = ""
    alpaca_feed: str = "iex"  # 'iex' (free), 'sip' (paid), 'delayed_sip'
    alpaca_page_limit: int = 10000
    alpaca_timeout: float = 30.0

    # ── Detection windows (calendar days) ──
    scan_days: int = 180
    pre_context_days: int = 30
    recent_days: int = 90
    fetch_days_scan: int = 220
    fetch_days_chart: int = 365

    # ── Data sufficiency ──
    min_minute_bars: int = 500
    min_scan_bars: int = 200
    min_daily_days: int = 10

    # ── Zones ──
    max_zones: int = 3

    # ── Batch scan ──
    scan_concurrency: int = 3
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    breaker_failure_threshold: int = 5
    breaker_recovery_timeout: float = 30.0

    @property
    def alpaca_configured(self) -> bool:
        return bool(self.alpaca_api_key and self.alpaca_secret_key)

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance, created once and reused everywhere."""
    return Settings()
