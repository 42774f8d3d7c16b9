from app.tasks.reconciliation import reconcile_payment, reconcile_payment_batch

__all__ = [
    "reconcile_payment",
    "reconcile_payment_batch",
]
