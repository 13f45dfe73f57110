from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Request limits
MIN_IMAGES = 1
MAX_IMAGES = 10

ALLOWED_LISTING_HOSTS = ("airbnb.com", "airbnb.co.uk")
MIN_ROOM_ID_LENGTH = 8

# Circuit breaker thresholds (consecutive failures, cooldown in seconds)
SCRAPER_BREAKER = (3, 30.0)
ANALYZER_BREAKER = (5, 60.0)
GENERATOR_BREAKER = (5, 60.0)

# Job store housekeeping
EVICTION_FRACTION = 0.1


class Settings(BaseSettings):
    app_name: str = "Listing Photo Optimizer"
    log_level: str = "INFO"

    apify_token: Optional[str] = None
    apify_base_url: str = "https://api.apify.com/v2"
    apify_actor: str = "tri_angle/airbnb-rooms-urls-scraper"

    gemini_api_key: Optional[str] = None
    gemini_analysis_model: str = "gemini-2.5-flash"
    gemini_generation_model: str = "gemini-2.5-flash-image-preview"

    scrape_timeout: float = 120.0
    scrape_attempts: int = 3
    scrape_backoff_base: float = 2.0
    download_timeout: float = 30.0

    max_images_default: int = Field(default=MAX_IMAGES, ge=MIN_IMAGES, le=MAX_IMAGES)
    max_jobs: int = 1000
    job_ttl: float = 60 * 60 * 24  # 24 hours
    cleanup_interval: float = 60 * 60  # hourly sweep
    status_cache_ttl: float = 60 * 5  # 5 minutes
    status_cache_max_entries: int = 100

    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])
    cors_allow_methods: List[str] = Field(default_factory=lambda: ["*"])
    cors_allow_headers: List[str] = Field(default_factory=lambda: ["*"])
    cors_allow_credentials: bool = False

    model_config = SettingsConfigDict(env_prefix="APP_", env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
