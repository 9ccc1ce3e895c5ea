"""Engine settings.

Values come from keyword arguments, then ``SEMQL_*`` environment variables,
then an optional ``.env`` file::

    SEMQL_MAX_ATTEMPTS=3
    SEMQL_STATEMENT_TIMEOUT_SECONDS=10
    SEMQL_TIE_BREAK=alphabetical
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from semql.joins.path_finder import TieBreakRule


class EngineSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SEMQL_", env_file=".env", env_ignore_empty=True, extra="ignore"
    )

    # Execution-repair loop
    max_attempts: int = Field(default=2, ge=1)
    statement_timeout_seconds: float = Field(default=30.0, gt=0)

    # Phase controller
    max_steps: int = Field(default=100, ge=1)

    # Planning / compilation
    tie_break: TieBreakRule = TieBreakRule.MOST_FREQUENT
    dialect: str = "sqlite"

    # Advisory cost threshold (estimated output rows)
    warn_row_threshold: int = Field(default=100_000, ge=0)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


@lru_cache
def get_settings() -> EngineSettings:
    """Process-wide settings, read once."""
    return EngineSettings()
