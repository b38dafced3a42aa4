from pathlib import Path
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url
from functools import lru_cache

SNAPSHOT_FILENAME = "pool_stats.json"


class Settings(BaseSettings):
    PROJECT_NAME: str = "poolstats-etl"

    # Storage: either a full URL or discrete connection settings
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "postgres"
    DB_PASSWORD: Optional[str] = None
    DB_NAME: str = "postgres"
    DB_SSLMODE: Optional[str] = None

    # Snapshot source
    POOL_STATS_FILE: Optional[str] = None
    LOGS_DIR: Optional[str] = None

    # Ingestion tuning
    BATCH_SIZE: int = 10
    INGEST_MODE: Literal["full", "top"] = "full"
    TOP_N: int = 10
    TOP_METRIC: Literal[
        "hashrate_1m", "hashrate_5m", "hashrate_1hr", "hashrate_1d", "hashrate_7d"
    ] = "hashrate_1d"
    TRANSACTION_TIMEOUT_SECONDS: float = 30.0
    CREATE_TABLES: bool = False

    SQL_ECHO: bool = False
    LOG_LEVEL: str = "INFO"
    PUSHGATEWAY_URL: Optional[str] = None

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore"
    )

    @field_validator("BATCH_SIZE", "TOP_N")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("TRANSACTION_TIMEOUT_SECONDS")
    @classmethod
    def positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @property
    def snapshot_path(self) -> Path:
        """
        Resolves the snapshot location. A directory means `pool_stats.json` inside it.
        """
        if self.POOL_STATS_FILE:
            return Path(self.POOL_STATS_FILE)
        if self.LOGS_DIR:
            return Path(self.LOGS_DIR) / SNAPSHOT_FILENAME
        return Path(".") / SNAPSHOT_FILENAME

    @property
    def database_url(self) -> URL:
        if self.DATABASE_URL:
            url = make_url(self.DATABASE_URL)
            if url.drivername in ("postgres", "postgresql"):
                url = url.set(drivername="postgresql+asyncpg")
            # asyncpg takes the TLS mode as a connect argument, not a URL parameter
            return url.difference_update_query(["sslmode"])
        return URL.create(
            "postgresql+asyncpg",
            username=self.DB_USER,
            password=self.DB_PASSWORD,
            host=self.DB_HOST,
            port=self.DB_PORT,
            database=self.DB_NAME,
        )

    @property
    def ssl_mode(self) -> Optional[str]:
        if self.DATABASE_URL:
            sslmode = make_url(self.DATABASE_URL).query.get("sslmode")
            if isinstance(sslmode, tuple):
                sslmode = sslmode[-1]
            return sslmode or self.DB_SSLMODE
        return self.DB_SSLMODE


@lru_cache()
def get_settings():
    return Settings()
