"""Application configuration."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Shell settings loaded from FORECAST_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FORECAST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    data_dir: Path = Path("data")
    symbol: str = "EURUSD"
    database_url: str = ""  # empty = SQLite file under data_dir
    models_file: Path = Path("models.yaml")

    # Raw historical feed (yearly 1m CSV files)
    raw_first_year: int = 2000
    raw_last_year: int = 2020
    raw_hours_offset: int = 6

    # AlphaVantage realtime feed
    alphavantage_api_key: str = ""
    alphavantage_url: str = "https://www.alphavantage.co/query"
    from_symbol: str = "EUR"
    to_symbol: str = "USD"
    request_timeout: float = 60.0

    @property
    def symbol_dir(self) -> Path:
        return self.data_dir / self.symbol

    @property
    def resolved_database_url(self) -> str:
        return self.database_url or f"sqlite:///{self.symbol_dir / 'forecast.db'}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
