"""Celery tasks for payment reconciliation.

Results are returned as JSON-safe dicts so they can travel through the
result backend.
"""

import logging

from app.celery_app import celery_app
from app.db import SessionLocal
from app.models.billing import ReconciliationSource
from app.services import reconciliation as reconciliation_service
from app.services.reconciliation.errors import ReconciliationStoreError

logger = logging.getLogger(__name__)

MAX_RETRIES = 5


@celery_app.task(
    name="app.tasks.reconciliation.reconcile_payment",
    bind=True,
    max_retries=MAX_RETRIES,
    autoretry_for=(ReconciliationStoreError,),
    retry_backoff=True,
    retry_backoff_max=600,
)
def reconcile_payment(self, payment: dict, source: str = ReconciliationSource.manual.value):
    """Reconcile a single normalized payment.

    Store failures are retried with backoff; replaying the same transaction
    id is safe because reconciliation is idempotent.
    """
    session = SessionLocal()
    try:
        result = reconciliation_service.payment_reconciliations.reconcile(
            session, payment, source=source
        )
        return result.model_dump(mode="json")
    except ReconciliationStoreError:
        logger.warning(
            "Store failure for %s (attempt %d/%d)",
            payment.get("transaction_id"),
            self.request.retries + 1,
            MAX_RETRIES + 1,
        )
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.reconciliation.reconcile_payment_batch")
def reconcile_payment_batch(payments: list[dict]):
    session = SessionLocal()
    try:
        result = reconciliation_service.reconcile_batch(session, payments)
        return result.model_dump(mode="json")
    finally:
        session.close()
