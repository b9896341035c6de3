"""Configuration module for gitnote-sync."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from gitnote_sync import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: survives reinstalls, lives alongside the local data
_USER_ENV = Path.home() / ".gitnote" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


class SyncConfig(BaseModel):
    """Configuration for the sync engine and its local collaborators."""

    # Base directory for relative paths below
    base_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("GITNOTE_BASE_DIR", str(Path.home() / ".gitnote"))
        )
    )
    # Local relational store
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("GITNOTE_DATABASE_PATH", "data/notes.db")
        )
    )
    # Dotted-key settings store (JSON)
    settings_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("GITNOTE_SETTINGS_PATH", "config/settings.json")
        )
    )
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("GITNOTE_LOG_DIR")) if os.getenv("GITNOTE_LOG_DIR") else None
        )
    )
    # Remote (GitHub contents API)
    api_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "GITNOTE_API_BASE_URL", "https://api.github.com"
        )
    )
    repo_name: str = Field(
        default_factory=lambda: os.getenv("GITNOTE_REPO_NAME", "ai-note-sync")
    )
    request_timeout: float = Field(
        default_factory=lambda: float(os.getenv("GITNOTE_REQUEST_TIMEOUT", "30"))
    )
    # A freshly created repository may take a few seconds to accept writes
    repo_settle_delay: float = Field(
        default_factory=lambda: float(os.getenv("GITNOTE_REPO_SETTLE_DELAY", "2"))
    )
    repo_settle_attempts: int = Field(
        default_factory=lambda: int(os.getenv("GITNOTE_REPO_SETTLE_ATTEMPTS", "5"))
    )
    # Scheduler
    sync_interval: int = Field(
        default_factory=lambda: int(os.getenv("GITNOTE_SYNC_INTERVAL", "5"))
    )
    debounce_delay: float = Field(
        default_factory=lambda: float(os.getenv("GITNOTE_DEBOUNCE_DELAY", "30"))
    )
    followup_delay: float = Field(
        default_factory=lambda: float(os.getenv("GITNOTE_FOLLOWUP_DELAY", "1"))
    )
    default_notebook_name: str = Field(
        default_factory=lambda: os.getenv(
            "GITNOTE_DEFAULT_NOTEBOOK", "Default Notebook"
        )
    )
    user_agent: str = Field(default=f"gitnote-sync/{__version__}")

    @model_validator(mode="after")
    def _validate_timings(self) -> "SyncConfig":
        """Reject timings the scheduler cannot work with."""
        if self.sync_interval < 1:
            raise ValueError("sync_interval must be >= 1 minute")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")
        if self.debounce_delay < 0 or self.followup_delay < 0:
            raise ValueError("debounce_delay and followup_delay must be >= 0")
        if self.repo_settle_attempts < 1:
            raise ValueError("repo_settle_attempts must be >= 1")
        if self.debounce_delay > 600:
            logger.warning(
                "debounce_delay=%.0fs is long; local edits may wait minutes "
                "before reaching the remote",
                self.debounce_delay,
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_settings_file(self) -> Path:
        """Get the absolute path of the settings JSON file."""
        return self.get_absolute_path(self.settings_path)

    def get_log_dir(self) -> Path:
        """Get the log directory, defaulting to <base_dir>/logs."""
        if self.log_dir is None:
            return self.base_dir / "logs"
        return self.get_absolute_path(self.log_dir)


# Create a global config instance
config = SyncConfig()
