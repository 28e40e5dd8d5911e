# timesheet_bot/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    run_mode: Literal["all", "web", "poller"] = "all"
    log_level: str = "INFO"
    timezone: str = "Europe/Moscow"  # "today" is resolved in this zone

    # Storage
    storage_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "timesheet"
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    pg_connect_timeout: int = 5
    pg_statement_timeout_ms: int = 30000

    # Session Management
    session_ttl_seconds: int = 21600  # 6 hours, 0 disables expiry

    # Telegram
    telegram_bot_token: str | None = None
    telegram_mode: Literal["polling", "webhook"] = "polling"
    telegram_webhook_secret: str | None = None  # X-Telegram-Bot-Api-Secret-Token

    # Admin notifications (disputes)
    admin_notifications_enabled: bool = True
    admin_chat_id: str | None = None  # Telegram chat/group that receives disputes

    # Periodic triggers
    scheduler_enabled: bool = True
    daily_dispatch_time: str = "09:00"
    digest_days_of_month: str = "1,5,10,15,20,25,30"
    digest_dispatch_time: str = "09:00"

    # Aggregation / dispatch
    rolling_window_days: int = 5
    dispatch_concurrency: int = 10

    # Search
    search_candidate_limit: int = 50
    search_display_limit: int = 10
    search_scan_limit: int = 1000

    # Monitoring
    enable_metrics: bool = True
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}"
            f"@{self.pghost}:{self.pgport}/{self.pgdatabase}"
        )

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token)

    @property
    def digest_days(self) -> list[int]:
        """Parse ``digest_days_of_month`` into sorted unique day numbers."""
        days = set()
        for part in self.digest_days_of_month.split(","):
            part = part.strip()
            if part.isdigit() and 1 <= int(part) <= 31:
                days.add(int(part))
        return sorted(days)

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []

        required_fields = [
            ("telegram_bot_token", self.telegram_bot_token),
        ]
        if self.storage_backend == "postgres":
            required_fields.append(("database_url or pghost", self.database_url or self.pghost))
        if self.telegram_mode == "webhook":
            required_fields.append(("telegram_webhook_secret", self.telegram_webhook_secret))

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and s.storage_backend == "memory":
        warnings.append("prod: storage_backend=memory (all records are lost on restart).")

    if s.admin_notifications_enabled and not s.admin_chat_id:
        warnings.append("admin_chat_id is not set (disputes will only be logged).")

    if not s.telegram_bot_token:
        warnings.append("telegram_bot_token is missing (no messages can be delivered).")

    if s.scheduler_enabled and not s.digest_days:
        warnings.append("digest_days_of_month has no valid days (rolling digest never fires).")

    if s.rolling_window_days < 1:
        warnings.append("rolling_window_days < 1 (rolling views will be empty).")

    if s.session_ttl_seconds == 0:
        warnings.append("session_ttl_seconds=0: abandoned conversations never expire.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")


settings = Settings()
validate_or_warn(settings)
