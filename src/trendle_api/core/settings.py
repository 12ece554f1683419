from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./trendle.db"
    secret_key: str = "change-me"

    # Internal API security
    venue_api_key: str = ""
    admin_api_key: str = ""

    # Tier thresholds (balance based)
    tier_gold_threshold: int = 500
    tier_platinum_threshold: int = 1500

    # Vouchers
    voucher_ttl_days: int = 7
    voucher_code_bytes: int = 16

    # Check-ins
    checkin_radius_meters: float = 1100.0

    # Activity earning
    points_post_base: int = 40
    points_post_caption_bonus: int = 15
    points_post_caption_min_length: int = 20
    points_like: int = 1
    points_comment: int = 1
    comment_min_words: int = 4
    # JSON objects keyed by survey or task id, e.g. SURVEY_REWARDS='{"coffee-habits": 150}'
    survey_rewards: dict[str, int] = {}
    daily_task_rewards: dict[str, int] = {}

    # Anti-fraud limits
    daily_post_limit: int = 10
    daily_like_limit: int = 100
    daily_comment_limit: int = 100
    repeated_comment_threshold: int = 3
    repeated_comment_window_hours: int = 24

    # Cashouts
    cashout_minimum_points: int = 500
    cashout_cooldown_days: int = 7

    # Notifications
    notifications_enabled: bool = True

    # Tracing exporter: console, otlp or none
    otel_exporter: Literal["console", "otlp", "none"] = "console"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
