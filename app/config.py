"""
Configuration management for Storefront Insights
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Storefront Insights"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"
    timezone: str = "UTC"  # Used for "now" when resolving dashboard periods

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./storefront_insights.db"

    # Fernet key for OAuth/API tokens at rest
    encryption_key: Optional[str] = None

    # Shopify (commerce provider)
    shopify_api_version: str = "2024-04"
    shopify_request_timeout: float = 30.0
    shopify_rate_limit_delay_seconds: float = 5.0  # Fixed wait after a 429
    shopify_rate_limit_max_attempts: int = 3
    shopify_ids_per_request: int = 250  # products.json hard limit
    shopify_page_size: int = 250

    # Google Analytics 4 (traffic provider, per-merchant OAuth)
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = "http://localhost:8000/connect/google/callback"
    google_scopes: str = "https://www.googleapis.com/auth/analytics.readonly"
    google_auth_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    google_token_url: str = "https://oauth2.googleapis.com/token"
    oauth_state_ttl_seconds: int = 600
    ga4_request_timeout: float = 30.0

    # Token lifecycle
    token_expiry_leeway_seconds: int = 60

    # Caching
    dashboard_cache_ttl: int = 900  # 15 minutes
    inventory_cache_ttl: int = 3600  # 1 hour
    cache_max_entries: int = 500

    # Inventory vs traffic thresholds (inclusive)
    low_stock_threshold: int = 10
    high_stock_threshold: int = 100
    high_traffic_threshold: int = 50
    low_traffic_threshold: int = 5
    product_limit_for_analysis: int = 100
    top_products_default_limit: int = 50

    # Orchestration
    provider_timeout_seconds: float = 45.0

    # Authentication
    session_duration_hours: int = 72

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
