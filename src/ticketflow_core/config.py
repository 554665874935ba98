"""Application configuration management."""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Ticketflow settings loaded from environment variables (TICKETFLOW_*)."""

    app_name: str = "Ticketflow Core API"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./ticketflow.db"

    # CORS
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Seed "Automation" and "Support Desk" next to the default project
    seed_sample_projects: bool = True

    # Change stream
    event_queue_size: int = Field(256, ge=1)
    event_keepalive_seconds: float = Field(15.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="TICKETFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
