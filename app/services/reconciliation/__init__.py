"""Payment reconciliation services.

    from app.services import reconciliation as reconciliation_service
    reconciliation_service.payment_reconciliations.reconcile(db, payment)
    reconciliation_service.reconcile_batch(db, payments)
"""

from app.services.reconciliation.allocation import (
    AllocationLine,
    AllocationPlan,
    allocate,
    outstanding_sort_key,
    owed_amount,
)
from app.services.reconciliation.batch import reconcile_batch
from app.services.reconciliation.errors import (
    InvalidPaymentError,
    ReconciliationError,
    ReconciliationStoreError,
)
from app.services.reconciliation.orchestrator import PaymentReconciliations

payment_reconciliations = PaymentReconciliations()

__all__ = [
    "AllocationLine",
    "AllocationPlan",
    "InvalidPaymentError",
    "PaymentReconciliations",
    "ReconciliationError",
    "ReconciliationStoreError",
    "allocate",
    "outstanding_sort_key",
    "owed_amount",
    "payment_reconciliations",
    "reconcile_batch",
]
