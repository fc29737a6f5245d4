"""Application configuration."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    model_config = SettingsConfigDict(env_file=".env")

    # Database
    database_url: str

    # Application
    log_level: str = "INFO"
    log_json: bool = True
    expose_error_details: bool = False

    # Frontend (for CORS)
    frontend_url: str = "http://localhost:5173"

    # Operation executor
    executor_item_concurrency: int = 1
    max_concurrent_operations: int = 10
    operation_rate_limit: str = "30/minute"

    # Stalled operation recovery
    stalled_operation_minutes: int = 30
    stalled_check_interval_minutes: int = 10

    # Interview scheduling
    scheduling_horizon_days: int = 30
    resolution_lookahead_days: int = 14
    max_resolution_suggestions: int = 3

    # Outbound services used by notification/enrichment handlers
    notification_service_url: str | None = None
    enrichment_service_url: str | None = None
    outbound_api_key: str | None = None

    @property
    def frontend_urls(self) -> list[str]:
        """Parse frontend URLs from comma-separated env var."""
        return [url.strip() for url in self.frontend_url.split(",")]

    @field_validator(
        "executor_item_concurrency",
        "max_concurrent_operations",
        "stalled_operation_minutes",
        "stalled_check_interval_minutes",
        "scheduling_horizon_days",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Concurrency limits and intervals must be at least 1."""
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize log level name."""
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


settings = Settings()
