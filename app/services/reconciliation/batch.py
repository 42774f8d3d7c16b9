"""Batch reconciliation for import jobs and schedulers.

Every input item yields exactly one detail, in input order. A failing item
is recorded and the batch moves on; nothing is rolled back globally.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence

from sqlalchemy.orm import Session

from app.metrics import observe_job
from app.models.billing import ReconciliationSource
from app.schemas.reconciliation import (
    BatchItemResult,
    BatchResult,
    NormalizedPayment,
    ReconciliationOutcome,
)
from app.services.reconciliation.errors import InvalidPaymentError
from app.services.reconciliation.orchestrator import PaymentReconciliations

logger = logging.getLogger(__name__)


def _transaction_id_of(item) -> str | None:
    if isinstance(item, NormalizedPayment):
        return item.transaction_id
    if isinstance(item, Mapping):
        value = item.get("transaction_id", item.get("transactionId"))
        return str(value) if value is not None else None
    return None


def reconcile_batch(
    db: Session,
    payments: Sequence[NormalizedPayment | Mapping],
    source: ReconciliationSource = ReconciliationSource.batch,
    actor_id=None,
) -> BatchResult:
    started = time.monotonic()
    result = BatchResult(total=len(payments))
    for index, item in enumerate(payments):
        transaction_id = _transaction_id_of(item)
        try:
            outcome = PaymentReconciliations.reconcile(
                db, item, source=source, actor_id=actor_id
            )
        except Exception as exc:
            if isinstance(exc, InvalidPaymentError):
                logger.warning(
                    "Batch item %d (transaction %s) rejected: %s", index, transaction_id, exc
                )
            else:
                logger.exception(
                    "Batch item %d (transaction %s) failed", index, transaction_id
                )
            result.failed += 1
            result.details.append(
                BatchItemResult(
                    index=index,
                    transaction_id=transaction_id,
                    success=False,
                    error=str(exc) or exc.__class__.__name__,
                )
            )
            continue

        if outcome.outcome == ReconciliationOutcome.reconciled:
            result.successful += 1
        elif outcome.outcome == ReconciliationOutcome.already_reconciled:
            result.already_matched += 1
        else:
            result.failed += 1
        result.details.append(
            BatchItemResult(
                index=index,
                transaction_id=outcome.transaction_id,
                success=outcome.success,
                result=outcome,
            )
        )

    status = "success" if result.failed == 0 else "partial"
    observe_job("reconciliation.batch", status, time.monotonic() - started)
    logger.info(
        "Batch reconciliation finished: total=%d successful=%d already_matched=%d failed=%d",
        result.total,
        result.successful,
        result.already_matched,
        result.failed,
    )
    return result
