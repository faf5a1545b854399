"""Application settings loaded from the environment."""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    MBEE core settings.

    Every value can be overridden with an ``MBEE_`` prefixed environment
    variable (``MBEE_DATABASE_URL``, ``MBEE_LOG_LEVEL``, ...) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(env_prefix="MBEE_", env_file=".env", extra="ignore")

    # Database
    database_url: str = Field(default="sqlite:///./mbee.db", description="SQLAlchemy database URL")
    database_echo: bool = Field(default=False, description="Echo SQL statements")
    database_pool_size: int = Field(default=3, description="Base connection pool size (non-SQLite only)")
    database_max_overflow: int = Field(default=7, description="Extra connections above the pool size")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")

    # Identifier rules
    org_id_pattern: str = r"^[a-z0-9][a-z0-9_-]{0,63}$"
    project_id_pattern: str = r"^[a-z0-9][a-z0-9_-]{0,63}$"
    branch_id_pattern: str = r"^[a-z0-9][a-z0-9_-]{0,63}$"
    element_id_pattern: str = r"^[a-zA-Z0-9_-]{1,255}$"
    element_name_pattern: str = r"^[^\x00-\x1f]{0,255}$"

    # Store behaviour
    query_batch_size: int = Field(default=50000, ge=1, description="Max ids per IN query")
    default_branch: str = "master"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
