"""Runtime settings read from the environment."""

import os

from pydantic import BaseModel, Field


class StaleTimes(BaseModel):
    """Freshness windows in seconds, one per cache key class."""

    project_list: float = 5 * 60
    project_detail: float = 5 * 60
    project_stats: float = 2 * 60
    task_list: float = 2 * 60
    task_detail: float = 5 * 60
    task_by_project: float = 2 * 60
    dashboard_stats: float = 1 * 60


class Settings(BaseModel):
    backend_url: str = ""
    anon_key: str = ""
    database_url: str = "sqlite:///taskboard.db"
    read_retries: int = Field(default=1, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    search_debounce: float = Field(default=0.5, ge=0)
    request_timeout: float = Field(default=10.0, gt=0)
    stale_times: StaleTimes = Field(default_factory=StaleTimes)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``TASKBOARD_*`` environment variables."""
        return cls(
            backend_url=os.getenv("TASKBOARD_BACKEND_URL", "").rstrip("/"),
            anon_key=os.getenv("TASKBOARD_ANON_KEY", ""),
            database_url=os.getenv("TASKBOARD_DATABASE_URL", "sqlite:///taskboard.db"),
            read_retries=int(os.getenv("TASKBOARD_READ_RETRIES", "1")),
            retry_delay=float(os.getenv("TASKBOARD_RETRY_DELAY", "1.0")),
            search_debounce=float(os.getenv("TASKBOARD_SEARCH_DEBOUNCE", "0.5")),
            request_timeout=float(os.getenv("TASKBOARD_REQUEST_TIMEOUT", "10.0")),
        )

    @property
    def uses_remote_backend(self) -> bool:
        return bool(self.backend_url)
