"""Models for payment-event reconciliation."""

import enum
from collections import Counter
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

from ..dates import utc_now


class EventType(str, enum.Enum):
    """Provider event types that change local records."""
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    CHARGE_REFUNDED = "charge.refunded"


HANDLED_EVENT_TYPES: List[str] = [e.value for e in EventType]


class OutcomeStatus(str, enum.Enum):
    """What applying one event did."""
    APPLIED = "applied"  # records were written
    IGNORED = "ignored"  # event type has no handler
    SKIPPED = "skipped"  # event carries no member/organization to apply to
    FAILED = "failed"  # handler raised; the unit of work was rolled back


class ReconciliationOutcome(BaseModel):
    """Result of applying a single provider event."""
    event_id: str = Field(..., description="Provider event ID")
    event_type: str = Field(..., description="Provider event type")
    status: OutcomeStatus
    member_id: Optional[str] = None
    organization_id: Optional[str] = None
    resulting_status: Optional[str] = Field(None, description="Dues status after the event")
    message: Optional[str] = Field(None, description="Skip reason or error message")


class ReplayReport(BaseModel):
    """Summary of re-applying the provider's event stream over a time window."""
    provider: str
    start_time: datetime
    end_time: datetime
    dry_run: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    total_events: int = 0
    outcomes: List[ReconciliationOutcome] = Field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        """Number of outcomes per status, every status included."""
        tally = Counter(o.status.value for o in self.outcomes)
        return {status.value: tally.get(status.value, 0) for status in OutcomeStatus}

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return a summary of the replay without per-event outcomes."""
        return {
            "provider": self.provider,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "dry_run": self.dry_run,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_events": self.total_events,
            "counts": self.counts(),
        }

    def to_full_dict(self) -> Dict[str, Any]:
        """Return the summary plus every outcome."""
        result = self.to_summary_dict()
        result["outcomes"] = [o.model_dump(mode="json") for o in self.outcomes]
        return result
