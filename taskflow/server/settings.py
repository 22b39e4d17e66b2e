"""Service configuration loaded from TASKFLOW_* environment variables."""

from __future__ import annotations

import secrets

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TaskflowSettings(BaseSettings):
    """TaskFlow service settings.

    All fields are read from environment variables with the ``TASKFLOW_`` prefix.
    For example, ``TASKFLOW_LOG_LEVEL=DEBUG`` maps to ``log_level``.  The
    company name used by the workspace migration also honours the bare
    ``COMPANY_NAME`` variable.
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False
    """Write each log record as a JSON object (for log shippers)."""

    # -- Infrastructure --------------------------------------------------------
    database_url: str | None = None
    """PostgreSQL connection string (``postgresql+psycopg://``).  Required for full operation."""

    redis_url: str | None = None
    """Redis connection string.  When set, realtime events fan out over Redis pub/sub."""

    # -- Auth ------------------------------------------------------------------
    auth_token: str | None = None
    """Bearer token shared with the upstream gateway.  Auto-generated at startup if empty."""

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])
    ui_dir: str = "ui/dist"

    # -- Domain ----------------------------------------------------------------
    company_name: str = Field(
        default="TaskFlow Enterprise",
        validation_alias=AliasChoices("TASKFLOW_COMPANY_NAME", "COMPANY_NAME"),
    )
    """Name given to the CORE workspace created by ``taskflow migrate-workspaces``."""

    notification_page_size: int = 50
    changelog_retention_days: int = 90
    """Default age cutoff for ``DELETE /api/changelog/clear``."""

    # -- Helpers ---------------------------------------------------------------

    def resolve_auth_token(self) -> str:
        """Return the configured token or generate a random one."""
        if self.auth_token:
            return self.auth_token
        return secrets.token_urlsafe(32)


def get_settings() -> TaskflowSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> TaskflowSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return TaskflowSettings()


from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
