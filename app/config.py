# app/config.py

from typing import Optional
from pydantic_settings import BaseSettings
from urllib.parse import quote_plus


class Settings(BaseSettings):
    # MySQL connection
    db_host: str = "localhost"
    db_port: int = 3306
    db_user: str = "posture_api"
    db_password: str = "changeme"
    db_name: str = "posture_stats"

    # Full URL override (e.g. sqlite:///./posture.db for local runs)
    db_url: Optional[str] = None

    # Connection pool
    db_pool_size: int = 10
    db_pool_overflow: int = 20

    # Live counter cache
    cache_ttl_seconds: int = 600

    # Ingestion worker pool
    ingest_workers: int = 4
    ingest_queue_size: int = 1000
    dead_letter_size: int = 500

    # Daily aggregation
    goal_ratio: float = 80.0
    aggregation_workers: int = 4
    aggregation_hour: int = 3

    # Posture log retention
    cleanup_hour: int = 4
    log_retention_days: int = 30

    @property
    def database_url(self) -> str:
        if self.db_url:
            return self.db_url
        password = quote_plus(self.db_password)
        return (
            f"mysql+pymysql://{self.db_user}:{password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    class Config:
        env_file = ".env"
        env_prefix = "POSTURE_"


settings = Settings()
