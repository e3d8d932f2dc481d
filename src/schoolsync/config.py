"""Configuration management for SchoolSync."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SCHOOLSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Export discovery
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory scanned and watched for spreadsheet exports",
    )
    export_prefix: str = Field(
        default="export_",
        description="File name prefix identifying an export file",
    )

    # Storage
    database_path: Path = Field(
        default=Path("data/homework.db"),
        description="Path to SQLite database file",
    )
    snapshot_path: Optional[Path] = Field(
        default=Path("homework.json"),
        description="Flat JSON snapshot of merged entries (empty to disable)",
    )

    # Watcher
    debounce_seconds: float = Field(
        default=2.0,
        ge=0.1,
        le=10.0,
        description="Quiet window before a burst of file events triggers a sync",
    )
    signal_queue_size: int = Field(
        default=10,
        ge=1,
        description="Capacity of the sync trigger queue",
    )

    # Logging
    log_dir: Path = Field(
        default=Path(".local/schoolsync"),
        description="Directory for the debug log file",
    )
    log_level: str = Field(default="INFO", description="Console log level")

    # Study planning
    study_days_max: int = Field(
        default=4,
        ge=1,
        le=14,
        description="Maximum study sessions generated before a test",
    )
    test_keywords: list[str] = Field(
        default_factory=lambda: [
            "verifica",
            "prova",
            "test",
            "interrogazione",
            "quiz",
            "exam",
            "esame",
        ],
        description="Task text keywords (case-insensitive) marking a test",
    )

    @field_validator("snapshot_path", mode="before")
    @classmethod
    def _empty_snapshot_disables(cls, value):
        if value in ("", None):
            return None
        return value

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return f"sqlite:///{self.database_path}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
