"""Tests for settings and connector selection."""

import os
from unittest.mock import patch

from exchequer.config import Settings, DEFAULT_RATE_LIMIT
from exchequer.connectors import build_connector, SimulatorConnector, StripeConnector


class TestSettingsFromEnv:
    """Tests for reading settings from the environment."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()
        assert settings.stripe_api_key == ""
        assert settings.frontend_url == "http://localhost:8000"
        assert settings.environment == "development"
        assert settings.port == 3000
        assert settings.rate_limit == DEFAULT_RATE_LIMIT
        assert settings.rate_limit_enabled is True
        assert settings.database_url is None

    def test_reads_environment(self):
        env = {
            "STRIPE_API_KEY": "sk_test_abc",
            "STRIPE_WEBHOOK_SECRET": "whsec_abc",
            "DATABASE_URL": "postgresql://db/exchequer",
            "FRONTEND_URL": "https://club.example.org",
            "APP_ENV": "production",
            "PORT": "8080",
            "RATE_LIMIT": "10/minute",
            "RATE_LIMIT_ENABLED": "false",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()
        assert settings.stripe_api_key == "sk_test_abc"
        assert settings.stripe_webhook_secret == "whsec_abc"
        assert settings.database_url == "postgresql://db/exchequer"
        assert settings.frontend_url == "https://club.example.org"
        assert settings.is_production
        assert settings.port == 8080
        assert settings.rate_limit == "10/minute"
        assert settings.rate_limit_enabled is False

    def test_secret_key_alias(self):
        with patch.dict(os.environ, {"STRIPE_SECRET_KEY": "sk_test_alias"}, clear=True):
            settings = Settings.from_env()
        assert settings.stripe_api_key == "sk_test_alias"


class TestStripeConfigured:
    """Tests for demo mode detection."""

    def test_absent_key(self):
        assert not Settings().stripe_configured

    def test_placeholder_key(self):
        assert not Settings(stripe_api_key="sk_test_your_stripe_secret_key_here").stripe_configured

    def test_real_key(self):
        assert Settings(stripe_api_key="sk_test_51abc").stripe_configured


class TestBuildConnector:
    """Tests for picking the provider connector."""

    def test_simulator_without_key(self):
        connector = build_connector(Settings(stripe_webhook_secret="whsec_x"))
        assert isinstance(connector, SimulatorConnector)
        assert connector.demo is True
        assert connector.config.webhook_secret == "whsec_x"

    def test_stripe_with_key(self):
        connector = build_connector(Settings(stripe_api_key="sk_test_51abc", stripe_webhook_secret="whsec_x"))
        assert isinstance(connector, StripeConnector)
        assert connector.demo is False
