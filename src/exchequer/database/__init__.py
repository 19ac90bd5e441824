"""Database module for the record store."""

from .models import (
    Base,
    Document,
    Collection,
    PaymentStatus,
    ExpenseStatus,
    PaymentType,
    can_transition,
    document_path,
)
from .session import (
    get_database_url,
    create_async_engine,
    get_async_session_factory,
    DatabaseManager,
)
from .repository import RecordStore

__all__ = [
    # Models
    "Base",
    "Document",
    "Collection",
    "PaymentStatus",
    "ExpenseStatus",
    "PaymentType",
    "can_transition",
    "document_path",
    # Session management
    "get_database_url",
    "create_async_engine",
    "get_async_session_factory",
    "DatabaseManager",
    # Repositories
    "RecordStore",
]
