"""Application Settings - Central Configuration"""
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "staff_ops_dev"

    # Azure OpenAI (audit content generator)
    azure_openai_endpoint: str = ""
    azure_openai_api_key: str = ""
    azure_openai_deployment: str = "gpt-4"
    azure_openai_api_version: str = "2024-02-01"

    # Logging
    logs_path: str = "./logs"
    log_level: str = "INFO"

    # CORS - set to "*" to allow all origins
    cors_origins: str = "*"

    # Store access
    store_timeout_seconds: float = 10.0
    store_retry_attempts: int = 3
    store_retry_backoff_seconds: float = 0.5
    store_retry_max_backoff_seconds: float = 5.0
    job_collections: str = "jobs,job_assignments"

    # Identity resolver
    identity_cache_size: int = 10000

    # Notifications
    notification_page_size: int = 100
    subscription_poll_interval_seconds: float = 5.0
    subscription_max_backoff_seconds: float = 60.0

    # Weekly audit scheduler
    audit_enabled: bool = True
    audit_day_of_week: str = "mon"
    audit_hour: int = 2
    audit_generation_timeout_seconds: float = 120.0
    audit_max_attempts: int = 3
    audit_retry_backoff_minutes: float = 15.0  # 15, 30, 60 ...
    audit_retry_interval_minutes: int = 10
    audit_concurrency: int = 4
    audit_claim_timeout_minutes: int = 10  # Reclaim "generating" reports older than this
    audit_late_threshold_ratio: float = 1.2  # 20% over estimate counts as late

    # API server (run.py)
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Environment
    environment: str = "development"
    debug: bool = True

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string to list"""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def job_collections_list(self) -> List[str]:
        """Parse job collection names to list"""
        return [name.strip() for name in self.job_collections.split(",") if name.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
