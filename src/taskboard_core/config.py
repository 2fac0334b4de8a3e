"""
Configuration management for Taskboard Core.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TASKBOARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Taskboard Core API")
    log_level: str = Field(default="INFO")

    # Database
    database_url: str = Field(default="sqlite:///./taskboard.db")
    db_pool_size: int = Field(default=3)
    db_max_overflow: int = Field(default=7)

    # API
    cors_origins: list[str] = Field(default=["http://localhost:3000", "http://localhost:5173"])

    # Requirement quality analysis
    analysis_async: bool = Field(default=True)
    analysis_max_workers: int = Field(default=2)

    # Dependency graph
    dependency_chain_max_depth: int = Field(default=10)

    # Requirement lifecycle
    enforce_requirement_transitions: bool = Field(default=False)


@lru_cache()
def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
