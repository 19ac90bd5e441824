from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

# Canonical models
class ProviderCustomer(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

class PaymentIntentRequest(BaseModel):
    amount: int  # minor units
    currency: str
    customer_id: Optional[str] = None
    description: str
    metadata: Dict[str, str] = Field(default_factory=dict)

class ProviderPaymentIntent(BaseModel):
    id: str
    status: str  # provider status, e.g. requires_payment_method|processing|succeeded|canceled
    amount: int
    currency: str
    client_secret: Optional[str] = None
    customer_id: Optional[str] = None
    description: Optional[str] = None
    latest_charge: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

class TransferRequest(BaseModel):
    amount: int  # minor units
    currency: str
    destination: str
    description: str
    metadata: Dict[str, str] = Field(default_factory=dict)

class ProviderTransfer(BaseModel):
    id: str
    amount: int
    currency: str
    destination: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

class WebhookEvent(BaseModel):
    """A verified provider event, reduced to the fields reconciliation reads."""
    id: str
    type: str
    provider: str
    created: Optional[int] = None
    data_object: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], provider: str) -> "WebhookEvent":
        """Build an event from a Stripe-shaped ``{id, type, created, data: {object}}`` dict."""
        return cls(
            id=str(payload.get("id", "")),
            type=str(payload.get("type", "unknown")),
            provider=provider,
            created=payload.get("created"),
            data_object=(payload.get("data") or {}).get("object") or {},
        )


def epoch_seconds(value: datetime) -> int:
    """Unix timestamp of ``value``; naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def to_plain_dict(value: Any) -> Dict[str, Any]:
    """Convert an SDK object (or dict) into a plain dict."""
    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    if hasattr(value, "to_dict"):
        return dict(value.to_dict())
    return {}


class ConnectorBase(ABC):
    """
    Payment provider interface. Implementations should be side-effect free
    until the method makes a network call to the provider. Provider-side
    rejections are raised as ``ProviderError``; webhook verification failures
    as ``AuthenticationError``.
    """

    name: str = "base"
    # True for connectors that never move real money
    demo: bool = False

    @abstractmethod
    def find_customer(self, email: str) -> Optional[ProviderCustomer]:
        """
        Look up an existing customer by contact address.
        """
        raise NotImplementedError

    @abstractmethod
    def create_customer(self, email: Optional[str], name: Optional[str], metadata: Dict[str, str]) -> ProviderCustomer:
        raise NotImplementedError

    @abstractmethod
    def create_payment_intent(self, request: PaymentIntentRequest) -> ProviderPaymentIntent:
        raise NotImplementedError

    @abstractmethod
    def retrieve_payment_intent(self, payment_intent_id: str) -> ProviderPaymentIntent:
        raise NotImplementedError

    @abstractmethod
    def create_transfer(self, request: TransferRequest) -> ProviderTransfer:
        raise NotImplementedError

    @abstractmethod
    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> WebhookEvent:
        """
        Verify the signature of a webhook and canonicalize its payload.
        Must run before any field of the payload is trusted.
        """
        raise NotImplementedError

    @abstractmethod
    def list_events(self, start_time: datetime, end_time: datetime, types: List[str]) -> List[WebhookEvent]:
        """
        List provider events of the given types created within the window.
        """
        raise NotImplementedError

    def health_check(self) -> Dict[str, Any]:
        return {"ok": True, "provider": self.name, "demo": self.demo}
