"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis (primary cache)
    redis_addr: str = "localhost:6379"
    redis_password: Optional[str] = None
    redis_db: int = 0
    redis_socket_timeout: float = 2.0
    primary_ttl_seconds: int = 600  # 10 minutes

    # S3 / MinIO (durable versioned store)
    s3_enabled: bool = True
    s3_bucket: str = ""
    s3_region: str = "us-east-1"
    s3_endpoint: str = ""
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_force_path_style: bool = True
    s3_timeout: float = 5.0

    # Tolgee (origin)
    tolgee_app_key: str = ""
    tolgee_base_url: str = "https://app.tolgee.io"
    tolgee_page_size: int = 1000
    origin_timeout: float = 10.0

    # Webhook
    webhook_secret: str = ""
    webhook_window_seconds: int = 300  # 5 minutes

    # Staleness / background refresh
    staleness_threshold_seconds: int = 900  # 15 minutes
    refresh_timeout_seconds: float = 30.0
    refresh_workers: int = 4
    coalesce_timeout: float = 30.0

    # Serving
    request_timeout_seconds: float = 15.0
    default_language: str = "en"
    warmup_on_startup: bool = True
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
