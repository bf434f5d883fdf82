"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "FunnelLab"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./funnellab.db"

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Campaign weight cache
    cache_enabled: bool = True
    campaign_cache_ttl_seconds: int = 30

    # Rate Limiting (public tracking endpoints, per client IP)
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 600
    rate_limit_window: int = 60  # seconds

    # Admin API key (dashboard endpoints)
    admin_api_key: str = "admin-key-change-in-production"

    # CORS
    frontend_url: str = "http://localhost:5173"

    # Visitors
    visitor_cookie_max_age_days: int = 90

    # Significance engine
    significance_z_threshold: float = 1.65  # ~95% one-tailed
    significance_min_visitors: int = 10

    # Drop-off curve
    drop_off_bucket_seconds: int = 30

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
