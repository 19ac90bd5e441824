"""Payment provider connectors."""

import logging

from .base import (
    ConnectorBase,
    ProviderCustomer,
    PaymentIntentRequest,
    ProviderPaymentIntent,
    TransferRequest,
    ProviderTransfer,
    WebhookEvent,
)
from .stripe_connector import StripeConnector, verify_webhook
from .simulator_connector import (
    SimulatorConnector,
    SimulatorConfig,
    SimulatedIntent,
    sign_webhook_payload,
)
from ..config import Settings

logger = logging.getLogger(__name__)


def build_connector(settings: Settings) -> ConnectorBase:
    """Pick the provider for these settings: Stripe when a key is configured,
    otherwise the simulator (demo mode)."""
    if settings.stripe_configured:
        return StripeConnector(
            api_key=settings.stripe_api_key,
            webhook_secret=settings.stripe_webhook_secret,
        )
    logger.warning("Stripe is not configured - running in demo mode with the simulator connector")
    return SimulatorConnector(SimulatorConfig(webhook_secret=settings.stripe_webhook_secret))


__all__ = [
    # Base classes and models
    "ConnectorBase",
    "ProviderCustomer",
    "PaymentIntentRequest",
    "ProviderPaymentIntent",
    "TransferRequest",
    "ProviderTransfer",
    "WebhookEvent",
    # Connectors
    "StripeConnector",
    "SimulatorConnector",
    "SimulatorConfig",
    "SimulatedIntent",
    # Webhook signatures
    "verify_webhook",
    "sign_webhook_payload",
    # Factory
    "build_connector",
]
