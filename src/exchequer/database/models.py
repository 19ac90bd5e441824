"""SQLAlchemy models backing the hierarchical record store."""

import uuid
import json
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from sqlalchemy import (
    String,
    DateTime,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import enum


def utcnow() -> datetime:
    # Columns are naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Collection(str, enum.Enum):
    """Record collections held under each organization member."""
    MEMBERS = "members"
    DUES = "dues"
    EXPENSES = "expenses"
    PAYMENT_INTENTS = "payment_intents"
    DONATIONS = "donations"


class PaymentStatus(str, enum.Enum):
    """Status of PaymentIntent and Dues records."""
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class ExpenseStatus(str, enum.Enum):
    """Status of Expense records."""
    PENDING = "Pending"
    REIMBURSED = "Reimbursed"


class PaymentType(str, enum.Enum):
    """Value of the ``paymentType`` metadata attached to provider intents."""
    DUES = "dues"
    DONATION = "donation"
    EXPENSE = "expense"


# Forward-only transitions for PaymentIntent records
PAYMENT_TRANSITIONS: Dict[str, set] = {
    PaymentStatus.PENDING.value: {
        PaymentStatus.PAID.value,
        PaymentStatus.FAILED.value,
        PaymentStatus.REFUNDED.value,
    },
    PaymentStatus.PAID.value: {PaymentStatus.REFUNDED.value},
    PaymentStatus.FAILED.value: set(),
    PaymentStatus.REFUNDED.value: set(),
}


def can_transition(current: Optional[str], new: str) -> bool:
    """Return True if a PaymentIntent record may move from ``current`` to ``new``."""
    if current is None:
        return True
    return new in PAYMENT_TRANSITIONS.get(current, PAYMENT_TRANSITIONS[PaymentStatus.PENDING.value])


def document_path(
    organization_id: str,
    member_id: str,
    collection: str,
    doc_id: Optional[str] = None,
) -> str:
    """Render the hierarchical path of a document or collection."""
    path = f"organizations/{organization_id}/members/{member_id}/{collection}"
    if doc_id is not None:
        path = f"{path}/{doc_id}"
    return path


class Document(Base):
    """One document in the record store, addressed by org/member/collection/doc id."""
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id: Mapped[str] = mapped_column(String(255), nullable=False)
    member_id: Mapped[str] = mapped_column(String(255), nullable=False)
    collection: Mapped[str] = mapped_column(String(64), nullable=False)
    doc_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Document fields stored as JSON
    data_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "member_id", "collection", "doc_id",
            name="uq_documents_path",
        ),
        Index("ix_documents_collection", "organization_id", "member_id", "collection"),
    )

    @property
    def data(self) -> Dict[str, Any]:
        """Get document fields as dictionary."""
        if self.data_json:
            return json.loads(self.data_json)
        return {}

    @data.setter
    def data(self, value: Optional[Dict[str, Any]]) -> None:
        """Set document fields from dictionary."""
        self.data_json = json.dumps(value or {}, default=str)

    @property
    def path(self) -> str:
        return document_path(self.organization_id, self.member_id, self.collection, self.doc_id)

    def to_dict(self) -> Dict[str, Any]:
        """Return the document fields with its id, as clients see it."""
        return {"id": self.doc_id, **self.data}
