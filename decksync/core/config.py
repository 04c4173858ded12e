"""
DeckSync settings.

Every field can be overridden by the upper-cased environment variable of the
same name or by a `.env` file, e.g. `SYNC_PAGE_CAP=5`.
"""
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings for the API, the Celery worker and the sync pipeline."""

    # Application
    app_name: str = "DeckSync"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False

    # Database
    postgres_host: str = "db"
    postgres_port: int = 5432
    postgres_user: str = "decksync"
    postgres_password: str = "decksync"
    postgres_db: str = "decksync"
    database_url: str | None = None

    # Celery (Redis broker)
    celery_broker_url: str = "redis://redis:6379/0"
    celery_result_backend: str = "redis://redis:6379/0"

    # Limitless TCG source
    limitless_base_url: str = "https://onepiece.limitlesstcg.com"
    external_api_timeout: int = 30

    # Limitless client politeness
    scraper_user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36"
    )
    scraper_rate_limit_seconds: float = 1.0
    scraper_max_retries: int = 3
    scraper_backoff_factor: float = 2.0
    scraper_max_concurrency: int = 4

    # Sync run limits
    sync_max_workers: int = 4
    sync_page_cap: int = 20
    sync_page_size: int = 100
    sync_run_timeout_seconds: float = 900.0
    sync_max_concurrent_writes: int = 4
    sync_admin_token: str = ""  # Set via SYNC_ADMIN_TOKEN; empty disables the trigger endpoint
    sync_schedule_hours: str = "*/6"  # crontab hour field for the scheduled sync

    @property
    def database_url_computed(self) -> str:
        """Compute database URL from components if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
