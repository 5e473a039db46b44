from pydantic_settings import BaseSettings
from datetime import date
from typing import List
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./output/funds.db"

    # API
    api_v1_prefix: str = "/api/v1"

    # CORS
    cors_origins: str = '["http://localhost:5173","http://localhost:3000"]'

    # Upstream fund guide
    upstream_base_url: str = "https://www.avanza.se"
    series_timezone: str = "Europe/Stockholm"
    request_timeout: float = 30.0

    # Period window
    floor_year: int = 1998
    end_date: date | None = None  # None means today

    # Rate limiting and retry
    request_delay: float = 1.1  # Seconds between upstream requests
    fund_delay: float = 2.0  # Seconds between funds, per worker
    max_retries: int = 3
    initial_retry_delay: float = 30.0

    # Workers and reporting
    workers: int = 1
    list_batch_size: int = 20
    progress_interval: float = 1.0

    # Logging
    log_dir: str = "logs"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from JSON string."""
        return json.loads(self.cors_origins)

    @property
    def window_end(self) -> date:
        """Last day of the history window fetched for each fund."""
        return self.end_date or date.today()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "FUNDPERIODS_"


settings = Settings()
