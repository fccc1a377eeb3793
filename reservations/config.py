"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

log = logging.getLogger("reservations.config")

# Used when WEBHOOK_URL is not set.
DEFAULT_WEBHOOK_URL = "https://automation.example.com/webhook/reservations"


class Settings(BaseSettings):
    # Supabase (hosted database, auth, realtime)
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""
    reservations_table: str = "reservations"

    # Webhook relay
    webhook_url: str = ""
    webhook_timeout: float = 15.0

    # Push notifications (optional gateway, empty = disabled)
    push_notification_url: str = ""

    # Admin fast-path auth cache
    auth_state_path: str = ""
    auth_cache_ttl: float = 12 * 60 * 60

    # Dashboard timers (seconds)
    auth_check_interval: float = 5 * 60
    refresh_interval: float = 120.0
    loading_timeout: float = 10.0
    resubscribe_delay: float = 5.0
    fetch_retry_limit: int = 3
    fetch_retry_delay: float = 3.0

    # Server
    cors_origins: list[str] = ["*"]
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def webhook_destination(self) -> str:
        return self.webhook_url or DEFAULT_WEBHOOK_URL

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"https://your-project.supabase.co", "your-anon-key", "your-service-role-key"}

        if not self.supabase_url or self.supabase_url in _placeholders:
            raise ValueError(
                "SUPABASE_URL is missing or still a placeholder. "
                "Set it in .env to reach the reservations database."
            )
        if not self.supabase_anon_key or self.supabase_anon_key in _placeholders:
            raise ValueError(
                "SUPABASE_ANON_KEY is missing or still a placeholder. "
                "Set it in .env for the booking form and admin login."
            )

        if not self.supabase_service_role_key:
            warnings.append(
                "SUPABASE_SERVICE_ROLE_KEY not set. The webhook relay cannot "
                "clear manual-update markers."
            )

        if not self.webhook_url:
            warnings.append(
                f"WEBHOOK_URL not set. Change events go to the default {DEFAULT_WEBHOOK_URL}."
            )

        if not self.push_notification_url:
            warnings.append("PUSH_NOTIFICATION_URL not set. New-booking push notifications disabled.")

        if "*" in self.cors_origins and not self.debug:
            warnings.append("CORS_ORIGINS allows any origin.")

        return warnings


settings = Settings()
