"""
SQP Sync Configuration
======================
Environment-aware settings using pydantic-settings.
Loads from environment variables or .env files.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment: 'dev' routes all tables to dev schema, 'prod' uses defined schemas
    environment: str = "dev"

    # BigQuery warehouse
    bigquery_project_id: str = ""
    bigquery_dataset: str = ""
    bigquery_table: str = "seller-search_query_performance"
    bigquery_location: str = "US"
    google_application_credentials_json: str = ""

    # Supabase operational store
    supabase_url: str = ""
    supabase_service_key: str = ""

    # Scheduling
    sync_schedule: str = "0 2 * * *"
    retry_attempts: int = 3
    retry_delay_ms: int = 1000
    batch_size: int = 1000
    lookback_days: int = 90
    week_starts_on: int = 0  # 0 = Monday

    # Connection pool
    pool_max_connections: int = 5
    pool_idle_timeout_ms: int = 60000
    pool_acquire_timeout_ms: int = 30000

    # Deadlines
    query_timeout_seconds: float = 300.0
    write_timeout_seconds: float = 60.0

    # Validation
    comparison_threshold_pct: float = 1.0
    sum_tolerance_pct: float = 0.1
    outlier_zscore: float = 3.0

    # Post-sync
    materialized_views: list[str] = ["sqp.weekly_trends", "sqp.monthly_trends"]

    # Alerting
    consecutive_failure_threshold: int = 2
    long_running_sync_minutes: int = 15

    # Cross-process guard (Postgres advisory lock via RPC)
    use_advisory_lock: bool = False

    @property
    def source_table(self) -> str:
        """Fully qualified BigQuery source table."""
        return f"{self.bigquery_project_id}.{self.bigquery_dataset}.{self.bigquery_table}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
