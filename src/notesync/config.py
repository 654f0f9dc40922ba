"""Configuration module for the notesync client."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notesync.exceptions import ConfigurationError, ErrorCode

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the stored session
_USER_ENV = Path.home() / ".notesync" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

BACKENDS = ("rest", "local")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class NoteSyncConfig(BaseModel):
    """Configuration for the notesync client."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTESYNC_BASE_DIR", "."))
    )
    # Which backend serves notes and auth: "rest" (hosted) or "local" (SQLite)
    backend: str = Field(
        default_factory=lambda: os.getenv("NOTESYNC_BACKEND", "rest").lower()
    )
    # Hosted backend
    api_url: Optional[str] = Field(
        default_factory=lambda: os.getenv("NOTESYNC_API_URL") or None
    )
    api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("NOTESYNC_API_KEY") or None
    )
    request_timeout: float = Field(
        default_factory=lambda: float(os.getenv("NOTESYNC_REQUEST_TIMEOUT", "30"))
    )
    # Where the last session is stored so it can be restored on startup
    session_file: Path = Field(
        default_factory=lambda: Path(
            os.getenv(
                "NOTESYNC_SESSION_FILE",
                str(Path.home() / ".notesync" / "session.json"),
            )
        )
    )
    persist_session: bool = Field(
        default_factory=lambda: _env_flag("NOTESYNC_PERSIST_SESSION", "true")
    )
    # Local backend database
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTESYNC_DATABASE_PATH", "data/db/notesync.db")
        )
    )
    # Where the password reset e-mail sends the user
    password_reset_redirect_url: str = Field(
        default_factory=lambda: os.getenv(
            "NOTESYNC_RESET_REDIRECT_URL", "http://localhost:3000/reset-password"
        )
    )
    # Logging
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTESYNC_LOG_DIR"))
            if os.getenv("NOTESYNC_LOG_DIR")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("NOTESYNC_LOG_LEVEL", "INFO").upper()
    )

    @model_validator(mode="after")
    def _validate_settings(self) -> "NoteSyncConfig":
        """Reject unknown backends and unusable timeouts."""
        if self.backend not in BACKENDS:
            raise ValueError(
                f"backend must be one of {', '.join(BACKENDS)}, got '{self.backend}'"
            )
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for the local SQLite backend."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def require_remote(self) -> None:
        """Ensure the hosted backend settings are present.

        Raises:
            ConfigurationError: If the API URL or key is missing.
        """
        if not self.api_url:
            raise ConfigurationError(
                "NOTESYNC_API_URL is not set",
                config_key="api_url",
                code=ErrorCode.CONFIG_MISSING,
            )
        if not self.api_key:
            raise ConfigurationError(
                "NOTESYNC_API_KEY is not set",
                config_key="api_key",
                code=ErrorCode.CONFIG_MISSING,
            )


# Create a global config instance
config = NoteSyncConfig()
