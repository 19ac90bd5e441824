"""Simulator connector used in demo mode, when no Stripe key is configured."""

import hmac
import json
import time
import uuid
import hashlib
import logging
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
from datetime import datetime

from .base import (
    ConnectorBase,
    ProviderCustomer,
    PaymentIntentRequest,
    ProviderPaymentIntent,
    TransferRequest,
    ProviderTransfer,
    WebhookEvent,
    epoch_seconds,
)
from .stripe_connector import verify_webhook
from ..errors import ProviderError

logger = logging.getLogger(__name__)


def sign_webhook_payload(payload: str, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a ``stripe-signature`` header value for ``payload``.

    Uses Stripe's v1 scheme (HMAC-SHA256 over ``"{timestamp}.{payload}"``),
    so simulated events go through the same verification as real ones.
    """
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@dataclass
class SimulatedIntent:
    """In-memory representation of a simulated payment intent."""
    id: str
    amount: int
    currency: str
    status: str
    client_secret: str
    customer_id: Optional[str] = None
    description: Optional[str] = None
    latest_charge: Optional[str] = None
    amount_refunded: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    created: int = field(default_factory=lambda: int(time.time()))

    def to_payload(self) -> Dict[str, Any]:
        """Render the intent the way Stripe serializes one in an event."""
        return {
            "id": self.id,
            "object": "payment_intent",
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "customer": self.customer_id,
            "description": self.description,
            "latest_charge": self.latest_charge,
            "metadata": dict(self.metadata),
            "created": self.created,
        }


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    webhook_secret: str = ""
    fail_transfers: bool = False  # Reject every transfer, as a misconfigured account would


class SimulatorConnector(ConnectorBase):
    """
    Demo-mode provider that never moves money.

    Features:
    - In-memory customers, intents, transfers and events
    - Synthetic ``*_mock_*`` identifiers
    - Emits the events Stripe would send, for webhook delivery or replay
    """

    name = "simulator"
    demo = True

    def __init__(self, config: Optional[SimulatorConfig] = None):
        """Initialize the simulator with optional configuration."""
        self.config = config or SimulatorConfig()
        self._customers: Dict[str, ProviderCustomer] = {}
        self._intents: Dict[str, SimulatedIntent] = {}
        self._transfers: Dict[str, ProviderTransfer] = {}
        self._events: List[Dict[str, Any]] = []
        logger.info("SimulatorConnector initialized (demo mode)")

    def _generate_id(self, prefix: str) -> str:
        return f"{prefix}_mock_{uuid.uuid4().hex[:24]}"

    def _intent(self, payment_intent_id: str) -> SimulatedIntent:
        intent = self._intents.get(payment_intent_id)
        if intent is None:
            raise ProviderError(f"No such payment_intent: '{payment_intent_id}'", provider=self.name, code="resource_missing")
        return intent

    def find_customer(self, email: str) -> Optional[ProviderCustomer]:
        for customer in self._customers.values():
            if customer.email == email:
                return customer
        return None

    def create_customer(self, email: Optional[str], name: Optional[str], metadata: Dict[str, str]) -> ProviderCustomer:
        customer = ProviderCustomer(id=self._generate_id("cus"), email=email, name=name, metadata=dict(metadata))
        self._customers[customer.id] = customer
        return customer

    def create_payment_intent(self, request: PaymentIntentRequest) -> ProviderPaymentIntent:
        intent_id = self._generate_id("pi")
        intent = SimulatedIntent(
            id=intent_id,
            amount=request.amount,
            currency=request.currency.lower(),
            status="requires_payment_method",
            client_secret=f"{intent_id}_secret_{uuid.uuid4().hex[:16]}",
            customer_id=request.customer_id,
            description=request.description,
            metadata=dict(request.metadata),
        )
        self._intents[intent_id] = intent
        return self.retrieve_payment_intent(intent_id)

    def retrieve_payment_intent(self, payment_intent_id: str) -> ProviderPaymentIntent:
        intent = self._intent(payment_intent_id)
        return ProviderPaymentIntent(
            id=intent.id,
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
            client_secret=intent.client_secret,
            customer_id=intent.customer_id,
            description=intent.description,
            latest_charge=intent.latest_charge,
            metadata=dict(intent.metadata),
        )

    def create_transfer(self, request: TransferRequest) -> ProviderTransfer:
        if self.config.fail_transfers:
            raise ProviderError("Transfers are not enabled for this account", provider=self.name)
        transfer = ProviderTransfer(
            id=self._generate_id("tr"),
            amount=request.amount,
            currency=request.currency.lower(),
            destination=request.destination,
            metadata=dict(request.metadata),
        )
        self._transfers[transfer.id] = transfer
        return transfer

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> WebhookEvent:
        """Verify and parse a webhook signed with the simulator's secret."""
        return verify_webhook(headers, body, self.config.webhook_secret, provider=self.name)

    def list_events(self, start_time: datetime, end_time: datetime, types: List[str]) -> List[WebhookEvent]:
        start, end = epoch_seconds(start_time), epoch_seconds(end_time)
        return [
            WebhookEvent.from_payload(e, self.name)
            for e in self._events
            if e["type"] in types and start <= e["created"] <= end
        ]

    def _record_event(self, event_type: str, obj: Dict[str, Any]) -> Dict[str, Any]:
        event = {
            "id": self._generate_id("evt"),
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": obj},
        }
        self._events.append(event)
        return event

    def complete_payment_intent(
        self,
        payment_intent_id: str,
        succeed: bool = True,
        failure_message: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Settle an intent as the payer's confirmation would, and emit its event.

        Returns:
            The emitted event payload.
        """
        intent = self._intent(payment_intent_id)
        if succeed:
            intent.status = "succeeded"
            intent.latest_charge = self._generate_id("ch")
            payload = intent.to_payload()
            event_type = "payment_intent.succeeded"
        else:
            intent.status = "requires_payment_method"
            payload = intent.to_payload()
            payload["last_payment_error"] = {"message": failure_message or "Your card was declined."}
            event_type = "payment_intent.payment_failed"
        return self._record_event(event_type, payload)

    def refund_payment_intent(self, payment_intent_id: str, amount: Optional[int] = None) -> Dict[str, Any]:
        """Refund the intent's charge and emit ``charge.refunded``.

        Returns:
            The emitted event payload.
        """
        intent = self._intent(payment_intent_id)
        if intent.latest_charge is None:
            raise ProviderError(f"PaymentIntent {payment_intent_id} has no charge to refund", provider=self.name)
        intent.amount_refunded += amount if amount is not None else intent.amount - intent.amount_refunded
        charge = {
            "id": intent.latest_charge,
            "object": "charge",
            "amount": intent.amount,
            "amount_refunded": intent.amount_refunded,
            "payment_intent": intent.id,
            "refunded": intent.amount_refunded >= intent.amount,
            "refunds": {"object": "list", "data": [{"id": self._generate_id("re"), "amount": intent.amount_refunded}]},
        }
        return self._record_event("charge.refunded", charge)

    def signed_webhook(self, event: Dict[str, Any]) -> tuple:
        """Serialize ``event`` and sign it with the configured secret.

        Returns:
            Tuple of (body, headers) ready to POST to the webhook endpoint.
        """
        body = json.dumps(event)
        signature = sign_webhook_payload(body, self.config.webhook_secret)
        return body.encode("utf-8"), {"stripe-signature": signature, "content-type": "application/json"}

    def get_transfers(self) -> Dict[str, ProviderTransfer]:
        """Get all transfers (for testing)."""
        return dict(self._transfers)

    def health_check(self) -> Dict[str, Any]:
        """Return health status of the simulator."""
        return {
            "ok": True,
            "provider": self.name,
            "demo": True,
            "intent_count": len(self._intents),
            "webhook_secret_configured": bool(self.config.webhook_secret),
        }
