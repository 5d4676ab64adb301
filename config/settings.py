"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # "development", "staging" or "production"
    environment: str = "development"

    # GitHub configuration (commit counts)
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"
    github_commit_window_days: int = 30

    # Supabase configuration (members, points)
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # Freshness windows per namespace (seconds)
    member_cache_ttl: float = 60
    points_cache_ttl: float = 30
    commits_cache_ttl: float = 3 * 60 * 60

    # Upstream fetch behavior
    fetch_timeout_seconds: float = 10.0
    http_timeout_seconds: float = 10.0

    # Batch fan-out
    batch_concurrency_limit: int = 5
    batch_max_keys: int = 50

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
