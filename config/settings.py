"""Configuration management using pydantic-settings."""
from typing import Dict, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Remote data source
    remote_base_url: str = "http://localhost:8080"
    remote_api_token: Optional[str] = None
    request_timeout_seconds: float = 30.0

    # Rate limiting
    max_concurrent_requests: int = 10

    # Cache backend: "memory" or "sql"
    cache_backend: str = "memory"
    cache_database_url: str = "sqlite:///./readthrough_cache.db"
    cache_quota_bytes: Optional[int] = None

    # Entries never expire unless a TTL is configured or requested
    cache_default_ttl_seconds: Optional[float] = None
    cache_key_prefix: str = ""
    # {"/live/": 5, "^/items/\\d+$": 300}
    cache_ttl_rules: Dict[str, Optional[float]] = {}
    cache_data_prefix: str = "data:"
    cache_meta_prefix: str = "meta:"

    # Thread pools
    fetch_workers: int = 8
    store_workers: int = 2

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
