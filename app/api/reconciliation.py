from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db
from app.models.billing import ReconciliationSource
from app.schemas.activity import ActivityLogRead
from app.schemas.common import ListResponse
from app.schemas.reconciliation import (
    BatchRequest,
    BatchResult,
    NormalizedPayment,
    PaymentReconciliationRead,
    ReconciliationResult,
)
from app.services import reconciliation as reconciliation_service
from app.services import reconciliation_webhooks as reconciliation_webhooks_service
from app.services.activity import activity_recorder
from app.services.common import list_response
from app.services.reconciliation.errors import InvalidPaymentError, ReconciliationStoreError

router = APIRouter(prefix="/reconciliation")

_SIGNATURE_HEADERS = {
    "stripe": "Stripe-Signature",
    "paystack": "X-Paystack-Signature",
}


@router.post(
    "/payments",
    response_model=ReconciliationResult,
    tags=["reconciliation"],
)
def reconcile_payment(payload: NormalizedPayment, db: Session = Depends(get_db)):
    try:
        return reconciliation_service.payment_reconciliations.reconcile(
            db, payload, source=ReconciliationSource.manual
        )
    except InvalidPaymentError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ReconciliationStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@router.post(
    "/batch",
    response_model=BatchResult,
    tags=["reconciliation"],
)
def reconcile_payment_batch(payload: BatchRequest, db: Session = Depends(get_db)):
    if len(payload.payments) > settings.reconciliation_batch_max_items:
        raise HTTPException(
            status_code=400,
            detail=f"Batch exceeds {settings.reconciliation_batch_max_items} payments",
        )
    return reconciliation_service.reconcile_batch(db, payload.payments)


@router.get(
    "/transactions/{transaction_id}",
    response_model=PaymentReconciliationRead,
    tags=["reconciliation"],
)
def get_reconciliation(transaction_id: str, db: Session = Depends(get_db)):
    record = reconciliation_service.payment_reconciliations.get_by_transaction(
        db, transaction_id
    )
    if not record:
        raise HTTPException(status_code=404, detail="Reconciliation not found")
    return record


@router.get(
    "/activity",
    response_model=ListResponse[ActivityLogRead],
    tags=["reconciliation"],
)
def list_activity(
    isp_id: UUID | None = None,
    entity_type: str | None = None,
    action: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    items = activity_recorder.list(
        db, str(isp_id) if isp_id else None, entity_type, action, order_by, order_dir, limit, offset
    )
    return list_response(items, limit, offset)


@router.post(
    "/webhooks/{gateway}",
    tags=["reconciliation-webhooks"],
)
async def gateway_webhook(gateway: str, request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    signature = request.headers.get(_SIGNATURE_HEADERS.get(gateway, ""), "")
    return reconciliation_webhooks_service.process_gateway_webhook(
        db=db,
        gateway=gateway,
        body=body,
        signature=signature,
    )
