"""Application configuration for QueryTorque Plan."""

import logging
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment (``QT_PLAN_*``) or ``.env``."""

    # Logging
    log_level: str = "WARNING"

    # Cost analyzer
    expensive_threshold_pct: float = 20.0

    # Batch runner
    batch_max_workers: int = 4

    # Schema defaults when a plan omits one
    default_schema_sqlserver: str = "dbo"
    default_schema_postgres: str = "public"

    model_config = SettingsConfigDict(env_prefix="QT_PLAN_", env_file=".env")

    @property
    def log_level_number(self) -> int:
        """Numeric logging level, WARNING for unknown names."""
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.WARNING


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
