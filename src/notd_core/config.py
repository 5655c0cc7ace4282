"""Configuration module for the notd core."""

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notd_core import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config, shared by every checkout
_USER_ENV = Path.home() / ".notd" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

DEFAULT_TASK_STATES = "TODO,DOING,DONE,SOMEDAY,WAITING,CANCELLED"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class NotdConfig(BaseModel):
    """Configuration for the notd core."""

    # Base directory for the project
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTD_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTD_DATABASE_PATH", "data/db/notd.db")
        )
    )
    # When True the store lives in a process-private in-memory SQLite database
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("NOTD_IN_MEMORY_DB", "false")
    )
    busy_timeout_ms: int = Field(
        default_factory=lambda: int(os.getenv("NOTD_BUSY_TIMEOUT_MS", "5000"))
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("NOTD_SERVER_NAME", "notd-core"))
    server_version: str = Field(default=__version__)
    # Logging
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTD_LOG_DIR")) if os.getenv("NOTD_LOG_DIR") else None
        )
    )
    # Property parsing
    # Leading words that mark a line as a task and produce a status property
    task_states: List[str] = Field(
        default_factory=lambda: _env_list("NOTD_TASK_STATES", DEFAULT_TASK_STATES)
    )
    # Trigger notifications are handed to the notifier after commit
    notifications_enabled: bool = Field(
        default_factory=lambda: _env_flag("NOTD_NOTIFICATIONS_ENABLED", "true")
    )
    # Batch mutation limits
    max_batch_operations: int = Field(
        default_factory=lambda: int(os.getenv("NOTD_MAX_BATCH_OPERATIONS", "500"))
    )

    @model_validator(mode="after")
    def _validate_limits(self) -> "NotdConfig":
        """Reject limits that would make the store or batch engine unusable."""
        if self.max_batch_operations < 1:
            raise ValueError("max_batch_operations must be >= 1")
        if self.busy_timeout_ms < 1:
            raise ValueError("busy_timeout_ms must be >= 1")
        if not self.task_states:
            raise ValueError("task_states must name at least one state")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite://"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = NotdConfig()
