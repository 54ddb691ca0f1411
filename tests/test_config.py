from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from slotrank.config import AppConfig, DatabaseConfig, load_config

_KEYS = (
    "DATABASE_URL", "DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD",
    "SLOT_TIMEZONE", "ROLLOVER_TIMEZONE", "EVALUATION_INTERVAL_SECONDS",
    "CLAIM_TIMEOUT_SECONDS", "LEADERBOARD_TOP_K", "ENABLE_BACKGROUND_JOBS",
    "AUTH_SECRET_KEY", "INTERNAL_API_TOKEN",
)


def _clean_env(**overrides: str) -> dict[str, str]:
    env = {k: v for k, v in os.environ.items() if k not in _KEYS}
    env.update(overrides)
    return env


class TestDatabaseConfig:
    def test_dsn_property(self) -> None:
        cfg = DatabaseConfig(
            host="localhost", port=5432, database="testdb", user="u", password="p"
        )
        assert cfg.dsn == "postgresql://u:p@localhost:5432/testdb"

    def test_frozen(self) -> None:
        cfg = DatabaseConfig(
            host="localhost", port=5432, database="testdb", user="u", password="p"
        )
        with pytest.raises(AttributeError):
            cfg.host = "other"  # type: ignore[misc]


class TestLoadConfig:
    def test_loads_from_env(self) -> None:
        env = _clean_env(
            DATABASE_URL="postgresql://u:p@host:5432/db",
            SLOT_TIMEZONE="UTC",
            ROLLOVER_TIMEZONE="America/New_York",
            EVALUATION_INTERVAL_SECONDS="120",
            CLAIM_TIMEOUT_SECONDS="60",
            LEADERBOARD_TOP_K="10",
            ENABLE_BACKGROUND_JOBS="false",
            AUTH_SECRET_KEY="s3cret",
            INTERNAL_API_TOKEN="cron-token",
        )
        with patch.dict(os.environ, env, clear=True):
            cfg = load_config()

        assert cfg.db_dsn == "postgresql://u:p@host:5432/db"
        assert cfg.slot_timezone == "UTC"
        assert cfg.rollover_timezone == "America/New_York"
        assert cfg.evaluation_interval_seconds == 120
        assert cfg.claim_timeout_seconds == 60
        assert cfg.leaderboard_top_k == 10
        assert cfg.enable_background_jobs is False
        assert cfg.auth_secret_key == "s3cret"
        assert cfg.internal_api_token == "cron-token"

    def test_defaults(self) -> None:
        with patch.dict(os.environ, _clean_env(), clear=True):
            cfg = load_config()

        assert cfg.db_dsn == ""
        assert cfg.slot_timezone == "Europe/Berlin"
        assert cfg.rollover_timezone == "Europe/Berlin"
        assert cfg.evaluation_interval_seconds == 300
        assert cfg.claim_timeout_seconds == 900
        assert cfg.evaluation_batch_size == 500
        assert cfg.leaderboard_top_k == 30
        assert cfg.enable_background_jobs is True
        assert cfg.auth_secret_key == ""

    def test_dsn_from_parts(self) -> None:
        env = _clean_env(DB_HOST="db.local", DB_PORT="6543", DB_NAME="game",
                         DB_USER="svc", DB_PASSWORD="pw")
        with patch.dict(os.environ, env, clear=True):
            cfg = load_config()
        assert cfg.db_dsn == "postgresql://svc:pw@db.local:6543/game"

    def test_database_url_wins(self) -> None:
        env = _clean_env(DATABASE_URL="postgresql://a:b@c:1/d", DB_HOST="ignored")
        with patch.dict(os.environ, env, clear=True):
            cfg = load_config()
        assert cfg.db_dsn == "postgresql://a:b@c:1/d"

    def test_app_config_frozen(self) -> None:
        cfg = AppConfig(db_dsn="x")
        with pytest.raises(AttributeError):
            cfg.db_dsn = "y"  # type: ignore[misc]
