# sheet2chat/config.py
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
    local_timezone: str = "Asia/Tokyo"  # Task deadlines and reminder "tomorrow" are computed here

    # Legacy single-tenant deployment (the "main" promotion)
    # Values below are the environment layer of tenant default resolution:
    # per-promotion value -> these -> hard-coded defaults in core.domain
    legacy_promotion_id: str = "main"
    chatwork_token: str | None = None
    chatwork_room_id: str | None = None
    spreadsheet_id: str | None = None
    booking_list_sheet: str | None = None
    staff_list_sheet: str | None = None
    staff_chat_sheet: str | None = None

    # Admin error channel (fallback when the promotion config has none)
    admin_chatwork_token: str | None = None
    admin_room_id: str | None = None

    # Security
    webhook_secret: str | None = None  # X-Webhook-Secret for /api/webhook
    booking_webhook_token: str | None = None  # Bearer token for /api/webhook/booking
    booking_webhook_secret: str | None = None  # X-Webhook-Secret fallback for /api/webhook/booking
    cron_secret: str | None = None  # Bearer token for /api/cron/*
    metrics_token: str | None = None  # Bearer token for /metrics (else internal network only)
    admin_api_token: str | None = None  # Bearer token for the admin UI endpoints
    trust_proxy_headers: bool = True  # Use X-Forwarded-For for client IP
    internal_networks: str = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,127.0.0.0/8,::1/128"
    allowed_origins: list[str] = ["*"]

    # Database (promotion config store)
    database_url: str | None = None
    pg_pool_min: int = 1
    pg_pool_max: int = 10

    # Reverse index sheet name -> promotion (rebuilt on save or after this many seconds)
    sheet_index_ttl_seconds: int = 300

    # Google Sheets (service account JSON, as a string)
    google_service_account_json: str | None = None

    # Assignment viewer links written back to the booking sheet
    viewer_base_url: str = "http://localhost:8000"
    viewer_url_salt: str = "default-salt"

    # Booking write-back columns (1-indexed)
    staff_column: int = 9        # Column I
    viewer_url_column: int = 15  # Column O

    # Monitoring
    enable_metrics: bool = True
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def database_enabled(self) -> bool:
        return bool(self.database_url)

    @property
    def admin_channel_configured(self) -> bool:
        return bool(self.admin_chatwork_token and self.admin_room_id)

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []
        required_fields = [
            ("webhook_secret", self.webhook_secret),
            ("database_url", self.database_url),
        ]

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if not s.webhook_secret:
        warnings.append("webhook_secret is not set (/api/webhook accepts unauthenticated requests).")

    if not s.booking_webhook_token and not s.booking_webhook_secret:
        warnings.append("booking_webhook_token/booking_webhook_secret are not set (/api/webhook/booking rejects everything).")

    if not s.cron_secret:
        warnings.append("cron_secret is not set (/api/cron/reminder rejects everything).")

    if not s.admin_channel_configured:
        warnings.append(
            "admin_chatwork_token/admin_room_id not set: errors are only reported "
            "when the promotion config carries admin credentials."
        )

    if not s.database_enabled:
        warnings.append("database_url is not set: only the legacy promotion from environment is available.")

    if not s.google_service_account_json:
        warnings.append("google_service_account_json is not set (roster matching and reminders will fail).")

    if s.viewer_url_salt == "default-salt":
        warnings.append("viewer_url_salt is the default value (viewer links are guessable).")

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

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
