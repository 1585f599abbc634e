"""
Settings - Application configuration using Pydantic Settings.

Loads from environment variables and .env files.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Paths
    data_dir: Path = Path("data")
    db_path: Path = Path("data/dealsearch.db")

    # Search
    search_max_results: int = 100
    search_default_limit: int = 20
    search_max_query_length: int = 200
    search_min_query_length: int = 2  # suggestions are skipped below this
    search_default_radius_km: float = 50.0
    search_fuzzy_threshold: float = 0.3
    search_cache_ttl: int = 300
    search_cache_max_size: int = 1000
    search_enable_caching: bool = True
    search_enable_analytics: bool = True
    search_enable_suggestions: bool = True
    search_relevance_boosting: bool = False
    search_enrichment_concurrency: int = 8

    # Suggestions
    suggestion_max: int = 10
    suggestion_cache_ttl: int = 600
    vocabulary_top_deals: int = 100
    vocabulary_company_limit: int = 50
    vocabulary_refresh_interval: int = 3600

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False
    api_rate_limit_rpm: int = 120
    api_cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
