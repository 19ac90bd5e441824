import json
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional
import stripe
from .base import (
    ConnectorBase,
    ProviderCustomer,
    PaymentIntentRequest,
    ProviderPaymentIntent,
    TransferRequest,
    ProviderTransfer,
    WebhookEvent,
    epoch_seconds,
    to_plain_dict,
)
from ..errors import AuthenticationError, ProviderError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"


def verify_webhook(headers: Dict[str, str], body: bytes, secret: Optional[str], provider: str = "stripe") -> WebhookEvent:
    """
    Verify a webhook against the shared signing secret using Stripe's signature
    scheme, then canonicalize the payload. Nothing in the body is read before
    the signature checks out.
    """
    if not secret:
        raise AuthenticationError("Webhook signing secret is not configured")
    sig_header = headers.get(SIGNATURE_HEADER)
    if not sig_header:
        raise AuthenticationError("Missing stripe-signature header")
    try:
        stripe.Webhook.construct_event(payload=body, sig_header=sig_header, secret=secret)
    except stripe.SignatureVerificationError as e:
        raise AuthenticationError(str(e)) from e
    except ValueError as e:
        raise AuthenticationError("Invalid payload") from e
    return WebhookEvent.from_payload(json.loads(body), provider)


class StripeConnector(ConnectorBase):
    """
    Stripe connector using stripe-python. The API key is passed on every call
    rather than set on the module, so several connectors can coexist.
    The frontend confirms intents with the returned client secret via Stripe.js.
    """

    name = "stripe"

    def __init__(self, api_key: str, webhook_secret: str = ""):
        self._api_key = api_key
        if not self._api_key:
            raise ValueError("STRIPE_API_KEY is not configured")
        self._webhook_secret = webhook_secret

    @staticmethod
    def _provider_error(e: "stripe.StripeError") -> ProviderError:
        message = getattr(e, "user_message", None) or str(e)
        return ProviderError(message, provider="stripe", code=getattr(e, "code", None))

    @staticmethod
    def _intent_from_stripe(pi: Any) -> ProviderPaymentIntent:
        latest_charge = getattr(pi, "latest_charge", None)
        if latest_charge is not None and not isinstance(latest_charge, str):
            # expanded charge object
            latest_charge = getattr(latest_charge, "id", None)
        customer = getattr(pi, "customer", None)
        if customer is not None and not isinstance(customer, str):
            customer = getattr(customer, "id", None)
        return ProviderPaymentIntent(
            id=pi.id,
            status=pi.status,
            amount=pi.amount,
            currency=pi.currency,
            client_secret=getattr(pi, "client_secret", None),
            customer_id=customer,
            description=getattr(pi, "description", None),
            latest_charge=latest_charge,
            metadata=to_plain_dict(getattr(pi, "metadata", None)),
        )

    def find_customer(self, email: str) -> Optional[ProviderCustomer]:
        try:
            existing = stripe.Customer.list(email=email, limit=1, api_key=self._api_key)
        except stripe.StripeError as e:
            raise self._provider_error(e) from e
        if not existing.data:
            return None
        c = existing.data[0]
        return ProviderCustomer(id=c.id, email=getattr(c, "email", None), name=getattr(c, "name", None))

    def create_customer(self, email: Optional[str], name: Optional[str], metadata: Dict[str, str]) -> ProviderCustomer:
        try:
            c = stripe.Customer.create(email=email, name=name, metadata=metadata, api_key=self._api_key)
        except stripe.StripeError as e:
            raise self._provider_error(e) from e
        logger.info(f"Created Stripe customer {c.id}")
        return ProviderCustomer(id=c.id, email=email, name=name, metadata=metadata)

    def create_payment_intent(self, request: PaymentIntentRequest) -> ProviderPaymentIntent:
        try:
            pi = stripe.PaymentIntent.create(
                amount=request.amount,
                currency=request.currency.lower(),
                customer=request.customer_id,
                description=request.description,
                metadata=request.metadata,
                automatic_payment_methods={"enabled": True},
                api_key=self._api_key,
            )
        except stripe.StripeError as e:
            raise self._provider_error(e) from e
        return self._intent_from_stripe(pi)

    def retrieve_payment_intent(self, payment_intent_id: str) -> ProviderPaymentIntent:
        try:
            pi = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self._api_key)
        except stripe.StripeError as e:
            raise self._provider_error(e) from e
        return self._intent_from_stripe(pi)

    def create_transfer(self, request: TransferRequest) -> ProviderTransfer:
        # Stripe only transfers to connected accounts; the destination is the
        # member's provider reference as recorded by the caller.
        try:
            t = stripe.Transfer.create(
                amount=request.amount,
                currency=request.currency.lower(),
                destination=request.destination,
                description=request.description,
                metadata=request.metadata,
                api_key=self._api_key,
            )
        except stripe.StripeError as e:
            raise self._provider_error(e) from e
        return ProviderTransfer(
            id=t.id,
            amount=request.amount,
            currency=request.currency.lower(),
            destination=request.destination,
            metadata=request.metadata,
        )

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> WebhookEvent:
        return verify_webhook(headers, body, self._webhook_secret, provider=self.name)

    def list_events(self, start_time: datetime, end_time: datetime, types: List[str]) -> List[WebhookEvent]:
        try:
            events = stripe.Event.list(
                created={"gte": epoch_seconds(start_time), "lte": epoch_seconds(end_time)},
                types=types,
                limit=100,
                api_key=self._api_key,
            )
            result = [
                WebhookEvent.from_payload(to_plain_dict(e), self.name)
                for e in events.auto_paging_iter()
            ]
        except stripe.StripeError as e:
            raise self._provider_error(e) from e
        # Stripe lists newest first; replay in the order they happened
        result.sort(key=lambda e: e.created or 0)
        return result

    def health_check(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "provider": self.name,
            "demo": False,
            "webhook_secret_configured": bool(self._webhook_secret),
        }
