"""Back-test configuration loaded from BACKTEST_* environment variables."""

from __future__ import annotations

import os
from datetime import date
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models.resolution import Resolution


class BacktestSettings(BaseSettings):
    """Weekly-window back-test and combination search settings."""

    model_config = SettingsConfigDict(
        env_prefix="BACKTEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    start_date: date = date(2012, 1, 1)
    end_date: date = date(2017, 12, 31)
    window_days: int = 7
    simulation_hours: int = 7 * 24
    workers: int = os.cpu_count() or 4
    output_dir: Path = Path("output")
    output_resolution: Resolution = Resolution.D1

    @field_validator("output_resolution", mode="before")
    @classmethod
    def _parse_resolution(cls, value):
        if isinstance(value, str) and not value.isdigit():
            return Resolution.from_label(value)
        return value


_settings: BacktestSettings | None = None


def get_backtest_settings() -> BacktestSettings:
    """Get cached back-test settings instance."""
    global _settings
    if _settings is None:
        _settings = BacktestSettings()
    return _settings
