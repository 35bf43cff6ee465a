"""Settings for the agenda scheduling core.

``AgendaSettings`` collects every tunable the scheduler reads at runtime:
batch sizing, overdue policy, default retry policy values, tick interval
and logging. Values come from ``AGENDA_*`` environment variables or a
``.env`` file.

Examples:
    >>> from agenda.core.settings import AgendaSettings
    >>> settings = AgendaSettings(default_concurrency=4)
    >>> settings.overdue_grace_ms
    300000

Fields
──────
default_max_count          : Max templates processed per ``schedule()`` call
default_concurrency        : Chunk size for cooperative fan-out
overdue_grace_seconds      : How late a trigger may be before it is overdue
overdue_action             : Policy applied by ``tick()`` (trigger/skip/reschedule) or unset
retry_*                    : Defaults for ``RetryPolicy.create_default()``
tick_interval_seconds      : Backend tick interval
statistics_max_attempts    : Optimistic-lock retries for statistics writes
log_level / json_logs      : structlog configuration
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from agenda.core.errors import ConfigError


class AgendaSettings(BaseSettings):
    """Runtime configuration for the scheduling core."""

    model_config = SettingsConfigDict(
        env_prefix="AGENDA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Dispatch ─────────────────────────────────────────────────
    default_max_count: int = Field(default=100, ge=1)
    default_concurrency: int = Field(default=10, ge=1)

    # ── Overdue handling ─────────────────────────────────────────
    overdue_grace_seconds: int = Field(default=300, ge=0)
    overdue_action: Literal["trigger", "skip", "reschedule"] | None = None

    # ── Retry defaults ───────────────────────────────────────────
    retry_enabled: bool = True
    retry_max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=5000, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    retry_max_delay_ms: int = Field(default=60000, ge=0)

    # ── Scheduling loop ──────────────────────────────────────────
    tick_interval_seconds: float = Field(default=10.0, gt=0)
    statistics_max_attempts: int = Field(default=3, ge=1)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    @model_validator(mode="after")
    def _check_retry_window(self) -> AgendaSettings:
        if self.retry_max_delay_ms < self.retry_delay_ms:
            raise ValueError("retry_max_delay_ms must be >= retry_delay_ms")
        return self

    @property
    def overdue_grace_ms(self) -> int:
        return self.overdue_grace_seconds * 1000


@lru_cache(maxsize=1)
def get_settings() -> AgendaSettings:
    """Return the process-wide settings instance (cached).

    Raises:
        ConfigError: The environment holds an invalid ``AGENDA_*`` value.
    """
    try:
        return AgendaSettings()
    except PydanticValidationError as exc:
        raise ConfigError(
            f"Invalid agenda settings: {exc.error_count()} error(s)", cause=exc
        ) from exc


def reset_settings_cache() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
