"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Workflow Automation Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./automation.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis Settings (Celery broker + result backend)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Step execution
    WORKFLOW_STEP_BUDGET: int = 10  # steps run in-process per job before re-enqueueing

    # Job queue
    JOB_MAX_ATTEMPTS: int = 3
    JOB_RETRY_BASE_DELAY_SECONDS: float = 60.0
    JOB_RETRY_MAX_DELAY_SECONDS: float = 3600.0
    JOB_RETRY_POLICY: str = "exponential"  # exponential, linear, fixed, none
    JOB_RETRY_JITTER: bool = False
    JOB_POLL_INTERVAL_SECONDS: float = 15.0
    JOB_BATCH_SIZE: int = 10
    JOB_CLAIM_TIMEOUT_SECONDS: int = 600  # matches the Celery hard time limit
    JOB_RETENTION_DAYS: int = 7
    STALLED_EXECUTION_MINUTES: int = 30

    # Collaborators (the surrounding system's action endpoints)
    COLLABORATOR_BASE_URL: str = "http://localhost:3000/api/internal"
    COLLABORATOR_API_KEY: str = ""
    COLLABORATOR_TIMEOUT_SECONDS: float = 15.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
