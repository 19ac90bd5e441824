"""Runtime configuration read from environment variables."""

import os
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Only one settlement currency is supported
SUPPORTED_CURRENCY = "usd"

# Keys shipped in sample env files; treated the same as an absent key
PLACEHOLDER_STRIPE_KEYS = {"sk_test_your_stripe_secret_key_here"}

DEFAULT_RATE_LIMIT = "100/15minutes"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Application settings.

    Build one with ``Settings.from_env()`` at start-up and pass it to
    ``create_app``; nothing else reads the environment directly.
    """
    stripe_api_key: str = ""
    stripe_webhook_secret: str = ""
    database_url: Optional[str] = None
    frontend_url: str = "http://localhost:8000"
    environment: str = "development"
    port: int = 3000
    rate_limit: str = DEFAULT_RATE_LIMIT
    rate_limit_enabled: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            stripe_api_key=os.getenv("STRIPE_API_KEY") or os.getenv("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
            database_url=os.getenv("DATABASE_URL") or None,
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:8000"),
            environment=os.getenv("APP_ENV", "development"),
            port=int(os.getenv("PORT", "3000")),
            rate_limit=os.getenv("RATE_LIMIT", DEFAULT_RATE_LIMIT),
            rate_limit_enabled=_env_flag("RATE_LIMIT_ENABLED", True),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    @property
    def stripe_configured(self) -> bool:
        """True when a usable Stripe secret key is present."""
        key = self.stripe_api_key.strip()
        return bool(key) and key not in PLACEHOLDER_STRIPE_KEYS

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the server and CLI entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
