"""
Configuration management for Manga Sync Service.
Supports both environment variables and database-stored overrides.
"""

import os
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///data/manga-sync.db"
PAGE_QUALITIES = ("data", "data-saver")


class ImportConfig(BaseModel):
    """Configuration for the catalog import service."""

    # MangaDex settings
    mangadex_api_url: str = Field(
        default="https://api.mangadex.org",
        description="MangaDex API base URL"
    )
    translated_language: str = Field(default="en", description="Chapter language to import")
    content_ratings: List[str] = Field(
        default_factory=lambda: ["safe", "suggestive"],
        description="Content ratings requested from MangaDex"
    )
    page_quality: str = Field(default="data-saver", description="Page image quality tier")

    # Import settings
    import_limit: int = Field(default=100, ge=1, description="Popular titles fetched per run")
    chapters_per_manga: int = Field(default=50, ge=1, description="Chapters fetched per title")
    request_delay_ms: int = Field(default=1000, ge=0, description="Delay between MangaDex calls")
    max_retries: int = Field(default=3, ge=1, description="Attempts per MangaDex call")
    import_interval_hours: float = Field(default=24, gt=0, description="Scheduler period in hours")
    run_timeout_minutes: int = Field(
        default=720, ge=0,
        description="Deadline for a single import run (0 disables)"
    )
    request_timeout_seconds: int = Field(default=30, ge=1, description="MangaDex request timeout")

    # Image proxy settings
    proxy_timeout_seconds: int = Field(default=20, ge=1, description="Image proxy upstream timeout")
    allow_volunteer_nodes: bool = Field(
        default=False,
        description="Allow at-home nodes outside the MangaDex domains"
    )

    # Application settings
    database_url: str = Field(
        default=DEFAULT_DATABASE_URL,
        description="Database connection URL"
    )
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("page_quality")
    @classmethod
    def check_page_quality(cls, value: str) -> str:
        if value not in PAGE_QUALITIES:
            raise ValueError(f"page_quality must be one of {', '.join(PAGE_QUALITIES)}")
        return value

    @property
    def request_delay_seconds(self) -> float:
        return self.request_delay_ms / 1000

    @property
    def run_timeout_seconds(self) -> Optional[float]:
        """Run deadline in seconds, or None when disabled."""
        if not self.run_timeout_minutes:
            return None
        return self.run_timeout_minutes * 60


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


def get_config_from_env() -> ImportConfig:
    """Load configuration from environment variables."""
    return ImportConfig(
        mangadex_api_url=os.getenv("MANGADEX_API_URL", "https://api.mangadex.org"),
        translated_language=os.getenv("TRANSLATED_LANGUAGE", "en"),
        content_ratings=_env_list("CONTENT_RATINGS", "safe,suggestive"),
        page_quality=os.getenv("PAGE_QUALITY", "data-saver"),
        import_limit=int(os.getenv("IMPORT_LIMIT", "100")),
        chapters_per_manga=int(os.getenv("CHAPTERS_PER_MANGA", "50")),
        request_delay_ms=int(os.getenv("REQUEST_DELAY_MS", "1000")),
        max_retries=int(os.getenv("MAX_RETRIES", "3")),
        import_interval_hours=float(os.getenv("IMPORT_INTERVAL_HOURS", "24")),
        run_timeout_minutes=int(os.getenv("RUN_TIMEOUT_MINUTES", "720")),
        request_timeout_seconds=int(os.getenv("REQUEST_TIMEOUT_SECONDS", "30")),
        proxy_timeout_seconds=int(os.getenv("PROXY_TIMEOUT_SECONDS", "20")),
        allow_volunteer_nodes=os.getenv("ALLOW_VOLUNTEER_NODES", "false").lower() == "true",
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


# Settings an operator may override from the database
OVERRIDABLE_FIELDS = (
    "import_limit",
    "chapters_per_manga",
    "request_delay_ms",
    "max_retries",
    "import_interval_hours",
    "run_timeout_minutes",
)


class ConfigManager:
    """
    Manages configuration with fallback from database to environment variables.
    """

    def __init__(self, database=None, env_config: Optional[ImportConfig] = None):
        self.database = database
        self._env_config = env_config or get_config_from_env()

    def load_overrides(self) -> dict:
        """Load non-empty overrides stored in the database."""
        if self.database is None:
            return {}

        from manga_sync.db.models import Config

        with self.database.session() as session:
            row = session.query(Config).first()
            if not row:
                return {}
            return {
                name: getattr(row, name)
                for name in OVERRIDABLE_FIELDS
                if getattr(row, name) is not None
            }

    def get_config(self) -> ImportConfig:
        """
        Get configuration, merging database values with environment variables.
        Database values take precedence over environment variables.
        """
        overrides = self.load_overrides()
        if not overrides:
            return self._env_config
        return self._env_config.model_copy(update=overrides)

    def save_config(self, config: ImportConfig) -> None:
        """Save overridable settings to the database."""
        if self.database is None:
            raise RuntimeError("Database not available")

        from manga_sync.db.models import Config

        with self.database.session() as session:
            row = session.query(Config).first()
            if not row:
                row = Config()
                session.add(row)

            for name in OVERRIDABLE_FIELDS:
                setattr(row, name, getattr(config, name))
