# tests/test_config.py
"""Tests for timesheet_bot/config.py"""
from __future__ import annotations

import pytest

from timesheet_bot.config import Settings, validate_or_warn, warn_on_risky_config


class TestSettings:
    def test_digest_days_parsing(self):
        s = Settings(digest_days_of_month="10, 1,abc,32,5,10")
        assert s.digest_days == [1, 5, 10]

    def test_database_dsn_prefers_url(self):
        assert Settings(database_url="postgresql://u@db/x").database_dsn == "postgresql://u@db/x"

    def test_database_dsn_from_parts(self):
        s = Settings(database_url=None, pguser="bot", pgpassword="pw", pghost="db", pgport=5433, pgdatabase="ts")
        assert s.database_dsn == "postgresql://bot:pw@db:5433/ts"

    def test_production_requirements(self):
        s = Settings(app_env="prod", telegram_bot_token=None, telegram_mode="webhook", telegram_webhook_secret=None)
        assert s.validate_required_for_production() == ["telegram_bot_token", "telegram_webhook_secret"]

    def test_non_production_requires_nothing(self):
        assert Settings(app_env="dev", telegram_bot_token=None).validate_required_for_production() == []

    def test_validate_or_warn_fails_hard_in_prod(self):
        with pytest.raises(RuntimeError):
            validate_or_warn(Settings(app_env="prod", telegram_bot_token=None))


class TestRiskyConfig:
    def test_memory_store_in_prod(self):
        s = Settings(app_env="prod", storage_backend="memory", telegram_bot_token="t")
        assert any("storage_backend=memory" in w for w in warn_on_risky_config(s))

    def test_ttl_disabled(self):
        s = Settings(session_ttl_seconds=0)
        assert any("never expire" in w for w in warn_on_risky_config(s))

    def test_clean_config(self):
        s = Settings(
            telegram_bot_token="t", admin_chat_id="-100", session_ttl_seconds=3600,
            digest_days_of_month="1,15", rolling_window_days=5,
        )
        assert warn_on_risky_config(s) == []
