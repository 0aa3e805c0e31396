"""Environment-based configuration."""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

DATA_DIR = Path.home() / ".lead-lander"


class Settings:
    """Configuration loaded from environment variables."""

    def __init__(self):
        self.api_secret = os.getenv("LL_API_SECRET", "")
        self.host = os.getenv("LL_API_HOST", "0.0.0.0")
        self.port = int(os.getenv("LL_API_PORT", "8000"))
        self.db_path = os.getenv("LL_DATABASE_PATH", str(DATA_DIR / "leads.db"))
        self.catalog_path = os.getenv("LL_CATALOG_PATH", str(DATA_DIR / "catalog.json"))
        self.debug = os.getenv("LL_ENGINE_ENV", "production") != "production"
        self.run_worker_in_api = os.getenv("LL_API_RUN_WORKER", "false").lower() == "true"

        # CORS
        self.allowed_origins = [
            origin.strip()
            for origin in os.getenv(
                "LL_ALLOWED_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if origin.strip()
        ]

        # Delivery
        self.max_attempts = int(os.getenv("LL_DELIVERY_MAX_ATTEMPTS", "5"))
        self.backoff_ms = int(os.getenv("LL_DELIVERY_BACKOFF_MS", "10000"))
        self.backoff_max_ms = int(os.getenv("LL_DELIVERY_BACKOFF_MAX_MS", "3600000"))
        self.worker_concurrency = int(os.getenv("LL_WORKER_CONCURRENCY", "5"))
        self.worker_poll_seconds = float(os.getenv("LL_WORKER_POLL_SECONDS", "1.0"))
        self.job_lease_seconds = int(os.getenv("LL_JOB_LEASE_SECONDS", "120"))
        self.http_timeout = float(os.getenv("LL_HTTP_TIMEOUT_SECONDS", "10"))

        # Intake
        self.honeypot_field = os.getenv("LL_HONEYPOT_FIELD", "website")

        # Lead notification email
        self.email_enabled = os.getenv("LL_EMAIL_ENABLED", "false").lower() == "true"
        self.smtp_host = os.getenv("LL_SMTP_HOST", "")
        self.smtp_port = int(os.getenv("LL_SMTP_PORT", "587"))
        self.smtp_user = os.getenv("LL_SMTP_USER", "")
        self.smtp_password = os.getenv("LL_SMTP_PASSWORD", "")
        self.smtp_from = os.getenv("LL_SMTP_FROM", "leads@localhost")
        self.smtp_use_tls = os.getenv("LL_SMTP_TLS", "true").lower() == "true"

    def require_api_secret(self) -> str:
        if not self.api_secret:
            raise RuntimeError(
                "LL_API_SECRET environment variable is required. "
                "Generate one with: openssl rand -hex 32"
            )
        return self.api_secret


_settings = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Re-read the environment (used after env changes, e.g. in tests)."""
    global _settings
    _settings = Settings()
    return _settings


class _SettingsProxy:
    """Lazy proxy so settings aren't loaded until first access."""

    def __getattr__(self, name):
        return getattr(_get_settings(), name)


settings = _SettingsProxy()
