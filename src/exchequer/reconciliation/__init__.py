"""Payment-event reconciliation.

Maps verified provider events onto local records:

- ``payment_intent.succeeded`` marks the member's dues Paid and records donations
- ``payment_intent.payment_failed`` marks the dues Failed with the failure reason
- ``charge.refunded`` marks the dues Refunded

Events are applied as they arrive through the webhook endpoint, or replayed
for a time window from the provider's event log.
"""

from .models import (
    EventType,
    HANDLED_EVENT_TYPES,
    OutcomeStatus,
    ReconciliationOutcome,
    ReplayReport,
)
from .reconciler import EventReconciler
from .service import ReconciliationService

__all__ = [
    # Models
    "EventType",
    "HANDLED_EVENT_TYPES",
    "OutcomeStatus",
    "ReconciliationOutcome",
    "ReplayReport",
    # Core Components
    "EventReconciler",
    "ReconciliationService",
]
