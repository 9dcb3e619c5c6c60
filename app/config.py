"""
Configuration management for the tour back office
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Via Nova Tours Back Office"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 4
    cors_origins: str = "*"  # Comma-separated

    # Database
    database_url: str = "sqlite:///./tour_backoffice.db"

    # Authentication
    initial_admin_email: str = ""
    initial_admin_password: str = ""
    session_duration_hours: int = 72

    # WooCommerce
    # Global fallback; per-site secrets come from the credential row or
    # WOOCOMMERCE_WEBHOOK_SECRET_<SITE_NAME> in the environment.
    woocommerce_webhook_secret: Optional[str] = None
    woo_per_page: int = 100
    woo_max_pages: int = 5
    woo_recent_orders_to_check: int = 20
    woo_request_delay_seconds: float = 0.5
    woo_rate_limit_backoff_seconds: float = 5.0
    woo_request_timeout_seconds: float = 60.0

    # Profit recalculation batches
    profit_max_orders_per_run: int = 50
    profit_batch_size: int = 5
    profit_delay_between_updates_ms: int = 100
    profit_delay_between_batches_ms: int = 2000

    # Webhook secrets
    ad_spend_webhook_secret: Optional[str] = None
    email_webhook_secret: Optional[str] = None

    # SendGrid
    sendgrid_api_key: Optional[str] = None
    sendgrid_from_email: str = "info@vianovatours.com"
    sendgrid_from_name: str = "Via Nova Tours"
    sendgrid_archive_bcc: Optional[str] = "archive@vianovatours.com"
    sendgrid_timeout_seconds: float = 30.0

    # Google Drive (ticket PDF downloads)
    google_drive_access_token: Optional[str] = None

    # Stripe
    stripe_secret_key: Optional[str] = None
    stripe_publishable_key: Optional[str] = None

    # Scheduler
    enable_scheduler: bool = True
    sync_woocommerce_interval_minutes: int = 15
    cleanup_duplicates_schedule: str = "30 3 * * *"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
