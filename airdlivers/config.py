# airdlivers/config.py
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
    log_level: str = "INFO"
    timezone: str = "Asia/Kolkata"  # Used for "date is not in the past" checks

    # Database
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "airdlivers"
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    pg_command_timeout: float = 10.0
    expected_schema_version: str = "001_init.sql"  # Update on deploy when new migrations are added

    # Submission sessions
    session_ttl_seconds: int = 86400  # Abandoned forms expire after 24 hours
    inbound_event_ttl_days: int = 30  # Idempotency records older than this are purged

    # Telegram
    telegram_bot_token: str | None = None
    telegram_channel_mode: Literal["polling", "webhook"] = "polling"
    telegram_webhook_secret: str | None = None  # X-Telegram-Bot-Api-Secret-Token
    telegram_webhook_url: str | None = None  # Public URL registered with setWebhook

    # Moderation
    moderation_chat_id: str | None = None  # Group/chat receiving summaries and mirrors
    super_admin_id: str | None = None  # Always treated as a moderator
    admin_pin: str | None = None  # PIN for /admin login; empty disables PIN login
    admin_session_ttl_hours: int = 12

    # Support
    support_email: str = "support@airdlivers.com"

    # Abuse protection
    chat_rate_limit_per_minute: int = 20  # Max inbound updates per chat per minute

    # Matching
    weight_tolerance_kg: float = 2.0
    date_tolerance_days: int = 1
    max_weight_kg: float = 10.0

    # Monitoring
    enable_metrics: bool = True
    metrics_token: str | None = None  # Required for /metrics outside dev

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

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        required_fields = [
            ("telegram_bot_token", self.telegram_bot_token),
            ("moderation_chat_id", self.moderation_chat_id),
            ("super_admin_id", self.super_admin_id),
        ]
        if self.telegram_channel_mode == "webhook":
            required_fields.append(("telegram_webhook_secret", self.telegram_webhook_secret))

        return [name for name, value in required_fields if not value]


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if not s.moderation_chat_id:
        warnings.append("moderation_chat_id is not set (submissions will not reach moderators).")

    if s.admin_pin and len(s.admin_pin) < 6:
        warnings.append("admin_pin is shorter than 6 characters.")

    if s.telegram_channel_mode == "webhook" and not s.telegram_webhook_secret:
        warnings.append("telegram_channel_mode=webhook but telegram_webhook_secret is empty (requests are not verified).")

    if s.enable_metrics and not s.metrics_token and s.app_env != "dev":
        warnings.append("enable_metrics=True but metrics_token is not set: /metrics is disabled outside dev.")

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
