from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from slotrank.slots import DEFAULT_TIMEZONE

_TRUE = ("1", "true", "yes")


@dataclass(frozen=True)
class DatabaseConfig:
    host: str
    port: int
    database: str
    user: str
    password: str

    @property
    def dsn(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass(frozen=True)
class AppConfig:
    db_dsn: str
    slot_timezone: str = DEFAULT_TIMEZONE
    rollover_timezone: str = DEFAULT_TIMEZONE
    evaluation_interval_seconds: int = 300
    price_refresh_interval_seconds: int = 300
    slot_broadcast_interval_seconds: int = 60
    rollover_check_interval_seconds: int = 60
    price_cache_ttl_seconds: int = 300
    claim_timeout_seconds: int = 900
    evaluation_batch_size: int = 500
    leaderboard_top_k: int = 30
    enable_background_jobs: bool = True
    auth_secret_key: str = ""
    internal_api_token: str = ""


def _database_from_parts() -> DatabaseConfig | None:
    host = os.environ.get("DB_HOST")
    if not host:
        return None
    return DatabaseConfig(
        host=host,
        port=int(os.environ.get("DB_PORT", "5432")),
        database=os.environ.get("DB_NAME", "slotrank"),
        user=os.environ.get("DB_USER", "slotrank"),
        password=os.environ.get("DB_PASSWORD", ""),
    )


def load_config() -> AppConfig:
    """Load application config from environment variables.

    Loads .env file if present in the current directory. DATABASE_URL wins
    over the DB_HOST/DB_PORT/DB_NAME/DB_USER/DB_PASSWORD parts.
    """
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    db_dsn = os.environ.get("DATABASE_URL", "")
    if not db_dsn:
        parts = _database_from_parts()
        db_dsn = parts.dsn if parts else ""

    return AppConfig(
        db_dsn=db_dsn,
        slot_timezone=os.environ.get("SLOT_TIMEZONE", DEFAULT_TIMEZONE),
        rollover_timezone=os.environ.get("ROLLOVER_TIMEZONE", DEFAULT_TIMEZONE),
        evaluation_interval_seconds=int(os.environ.get("EVALUATION_INTERVAL_SECONDS", "300")),
        price_refresh_interval_seconds=int(os.environ.get("PRICE_REFRESH_INTERVAL_SECONDS", "300")),
        slot_broadcast_interval_seconds=int(os.environ.get("SLOT_BROADCAST_INTERVAL_SECONDS", "60")),
        rollover_check_interval_seconds=int(os.environ.get("ROLLOVER_CHECK_INTERVAL_SECONDS", "60")),
        price_cache_ttl_seconds=int(os.environ.get("PRICE_CACHE_TTL_SECONDS", "300")),
        claim_timeout_seconds=int(os.environ.get("CLAIM_TIMEOUT_SECONDS", "900")),
        evaluation_batch_size=int(os.environ.get("EVALUATION_BATCH_SIZE", "500")),
        leaderboard_top_k=int(os.environ.get("LEADERBOARD_TOP_K", "30")),
        enable_background_jobs=os.environ.get("ENABLE_BACKGROUND_JOBS", "true").lower() in _TRUE,
        auth_secret_key=os.environ.get("AUTH_SECRET_KEY", ""),
        internal_api_token=os.environ.get("INTERNAL_API_TOKEN", ""),
    )
