# exchequer package
__version__ = "0.1.0"

from .config import Settings
from .database import (
    RecordStore,
    DatabaseManager,
    Collection,
    PaymentStatus,
    ExpenseStatus,
    PaymentType,
)
from .services import PaymentService, ExpenseService

# Reconciliation exports
from .reconciliation import (
    ReconciliationService,
    EventReconciler,
    ReconciliationOutcome,
    ReplayReport,
    OutcomeStatus,
)
