"""Reconcile one gateway payment notification against a customer's bills.

The whole read-allocate-write sequence runs in the session's transaction:
it commits once at the end or rolls back, so a failed or interrupted call
leaves nothing behind and can be retried with the same transaction id.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal

from pydantic import ValidationError
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import observe_reconciliation
from app.models.billing import (
    OUTSTANDING_BILL_STATUSES,
    Bill,
    BillStatus,
    Payment,
    PaymentMethod,
    PaymentReconciliation,
    PaymentStatus,
    ReconciliationSource,
)
from app.models.customer import Customer
from app.schemas.activity import ActivityEvent
from app.schemas.reconciliation import (
    MAX_PAYMENT_AMOUNT,
    BillAllocationRead,
    NormalizedPayment,
    PaymentRead,
    ReconciliationOutcome,
    ReconciliationResult,
)
from app.services.activity import activity_recorder
from app.services.common import ZERO, round_money, validate_enum
from app.services.reconciliation.allocation import allocate
from app.services.reconciliation.errors import InvalidPaymentError, ReconciliationStoreError

logger = logging.getLogger(__name__)

RECONCILED_ACTION = "auto_payment_reconciled"
OVERPAYMENT_ACTION = "payment_overpayment_flagged"
UNMATCHED_ACTION = "payment_unmatched"


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(str(error.get("msg")) for error in exc.errors())


def _coerce_payment(payment) -> NormalizedPayment:
    if isinstance(payment, NormalizedPayment):
        # model_construct() skips validators; re-check what the engine relies on.
        if not payment.transaction_id:
            raise InvalidPaymentError("Transaction ID is required")
        if not payment.customer_email and not payment.customer_phone:
            raise InvalidPaymentError("Customer email or phone is required")
        if payment.amount is None or payment.amount <= 0:
            raise InvalidPaymentError("Payment amount must be greater than 0")
        if payment.amount > MAX_PAYMENT_AMOUNT:
            raise InvalidPaymentError(f"Payment amount must not exceed {MAX_PAYMENT_AMOUNT}")
        return payment
    if not isinstance(payment, Mapping):
        raise InvalidPaymentError("Payment notification must be a mapping")
    try:
        return NormalizedPayment.model_validate(payment)
    except ValidationError as exc:
        raise InvalidPaymentError(_validation_message(exc)) from exc


def _default_method() -> PaymentMethod:
    try:
        return PaymentMethod(settings.reconciliation_default_method)
    except ValueError:
        return PaymentMethod.online


def _resolve_customer(db: Session, payment: NormalizedPayment) -> Customer | None:
    """Match by email first, then phone; anything but exactly one hit is a miss."""
    lookups = []
    if payment.customer_email:
        lookups.append(("email", func.lower(Customer.email) == payment.customer_email))
    if payment.customer_phone:
        lookups.append(("phone", Customer.phone == payment.customer_phone))
    for key, criterion in lookups:
        query = db.query(Customer).filter(criterion)
        if payment.isp_id:
            query = query.filter(Customer.isp_id == payment.isp_id)
        matches = query.limit(2).all()
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            logger.warning(
                "Ambiguous customer %s for transaction %s; refusing to reconcile",
                key,
                payment.transaction_id,
            )
            return None
    return None


def _find_existing(
    db: Session, transaction_id: str
) -> tuple[PaymentReconciliation | None, list[Payment]]:
    record = (
        db.query(PaymentReconciliation)
        .filter(PaymentReconciliation.transaction_id == transaction_id)
        .first()
    )
    payments = (
        db.query(Payment)
        .filter(Payment.transaction_id == transaction_id)
        .order_by(Payment.created_at.asc())
        .all()
    )
    return record, payments


def _load_outstanding_bills(db: Session, customer_id) -> list[Bill]:
    overdue_first = case((Bill.status == BillStatus.overdue, 0), else_=1)
    return (
        db.query(Bill)
        .filter(Bill.customer_id == customer_id)
        .filter(Bill.status.in_(OUTSTANDING_BILL_STATUSES))
        .order_by(
            Bill.due_date.asc(),
            overdue_first,
            Bill.created_at.asc(),
            Bill.bill_number.asc(),
        )
        .with_for_update()
        .all()
    )


def _apply_to_bill(bill: Bill, amount: Decimal, now: datetime) -> None:
    total = round_money(bill.total_amount or ZERO)
    paid = round_money(round_money(bill.paid_amount or ZERO) + amount)
    if paid >= total:
        bill.paid_amount = total
        bill.status = BillStatus.paid
        bill.completed_at = now
    else:
        bill.paid_amount = paid
        bill.status = BillStatus.partial


def _allocation_read(bill: Bill, applied: Decimal) -> BillAllocationRead:
    return BillAllocationRead(
        bill_id=bill.id,
        bill_number=bill.bill_number,
        applied_amount=round_money(applied),
        paid_amount=round_money(bill.paid_amount or ZERO),
        total_amount=round_money(bill.total_amount or ZERO),
        status=bill.status,
    )


def _already_reconciled(
    transaction_id: str,
    customer_id,
    record: PaymentReconciliation | None,
    payments: list[Payment],
) -> ReconciliationResult:
    observe_reconciliation(ReconciliationOutcome.already_reconciled.value)
    logger.info("Transaction %s already reconciled; skipping", transaction_id)
    return ReconciliationResult(
        success=True,
        matched=True,
        already_reconciled=True,
        outcome=ReconciliationOutcome.already_reconciled,
        message="Payment already reconciled",
        transaction_id=transaction_id,
        customer_id=record.customer_id if record else customer_id,
        allocations=[_allocation_read(p.bill, p.amount) for p in payments if p.bill],
        payments=[PaymentRead.model_validate(p) for p in payments],
        remainder=round_money(record.unapplied_amount) if record else ZERO,
    )


def _unmatched(
    db: Session,
    payment: NormalizedPayment,
    outcome: ReconciliationOutcome,
    message: str,
    customer: Customer | None = None,
    actor_id=None,
) -> ReconciliationResult:
    # Nothing is persisted for the payment itself, so a redelivery can still
    # succeed later; the activity entry keeps the miss visible.
    observe_reconciliation(outcome.value)
    logger.warning(
        "Payment %s (%s) not reconciled: %s",
        payment.transaction_id,
        payment.amount,
        message,
    )
    activity_recorder.record(
        db,
        ActivityEvent(
            actor_id=actor_id,
            action=UNMATCHED_ACTION,
            entity_type="customer" if customer else None,
            entity_id=str(customer.id) if customer else None,
            description=f"Payment {payment.transaction_id} of {payment.amount} not reconciled: {message}",
            isp_id=customer.isp_id if customer else payment.isp_id,
            metadata={
                "transaction_id": payment.transaction_id,
                "amount": str(payment.amount),
                "outcome": outcome.value,
            },
        ),
    )
    return ReconciliationResult(
        success=False,
        matched=False,
        outcome=outcome,
        message=message,
        transaction_id=payment.transaction_id,
        customer_id=customer.id if customer else None,
        remainder=payment.amount,
    )


class PaymentReconciliations:
    @staticmethod
    def reconcile(
        db: Session,
        payment: NormalizedPayment | Mapping,
        source: ReconciliationSource | str = ReconciliationSource.manual,
        actor_id=None,
    ) -> ReconciliationResult:
        """Apply one payment notification to the customer's outstanding bills.

        Raises:
            InvalidPaymentError: before any I/O, when the notification is unusable.
            ReconciliationStoreError: when a query or the commit fails.
        """
        payment = _coerce_payment(payment)
        source = validate_enum(source, ReconciliationSource, "source")
        transaction_id = payment.transaction_id

        try:
            customer = _resolve_customer(db, payment)
            if not customer:
                db.rollback()
                return _unmatched(
                    db,
                    payment,
                    ReconciliationOutcome.customer_not_found,
                    "Customer not found",
                    actor_id=actor_id,
                )

            record, existing = _find_existing(db, transaction_id)
            if record or existing:
                result = _already_reconciled(transaction_id, customer.id, record, existing)
                db.rollback()
                return result

            bills = _load_outstanding_bills(db, customer.id)
            plan = allocate(bills, payment.amount)
            if not plan.lines:
                db.rollback()
                return _unmatched(
                    db,
                    payment,
                    ReconciliationOutcome.no_outstanding_bills,
                    "No unpaid bills found for customer",
                    customer=customer,
                    actor_id=actor_id,
                )

            now = datetime.now(timezone.utc)
            method = payment.method or _default_method()
            payment_date = payment.payment_date or now
            notes = settings.reconciliation_note
            if payment.notes:
                notes = f"{notes}: {payment.notes}"

            db.add(
                PaymentReconciliation(
                    transaction_id=transaction_id,
                    customer_id=customer.id,
                    isp_id=customer.isp_id,
                    amount=payment.amount,
                    applied_amount=plan.applied_total,
                    unapplied_amount=plan.remainder,
                    method=method,
                    source=source,
                    payment_date=payment_date,
                )
            )
            created: list[tuple[Payment, Bill, Decimal]] = []
            for line in plan.lines:
                bill = line.bill
                row = Payment(
                    bill_id=bill.id,
                    customer_id=customer.id,
                    isp_id=customer.isp_id,
                    amount=line.amount,
                    method=method,
                    status=PaymentStatus.completed,
                    payment_date=payment_date,
                    transaction_id=transaction_id,
                    notes=notes,
                )
                db.add(row)
                _apply_to_bill(bill, line.amount, now)
                created.append((row, bill, line.amount))
            db.flush()
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            try:
                record, existing = _find_existing(db, transaction_id)
            except SQLAlchemyError as lookup_exc:
                db.rollback()
                raise ReconciliationStoreError(
                    f"Store failure while reconciling {transaction_id}",
                    transaction_id=transaction_id,
                ) from lookup_exc
            if record is None and not existing:
                # The violation was not a concurrent delivery of this transaction.
                observe_reconciliation("store_error")
                logger.error("Integrity failure reconciling %s: %s", transaction_id, exc)
                raise ReconciliationStoreError(
                    f"Store failure while reconciling {transaction_id}",
                    transaction_id=transaction_id,
                ) from exc
            logger.info("Transaction %s reconciled concurrently", transaction_id)
            return _already_reconciled(
                transaction_id, record.customer_id if record else None, record, existing
            )
        except SQLAlchemyError as exc:
            db.rollback()
            observe_reconciliation("store_error")
            logger.error("Store failure reconciling %s: %s", transaction_id, exc)
            raise ReconciliationStoreError(
                f"Store failure while reconciling {transaction_id}",
                transaction_id=transaction_id,
            ) from exc
        except Exception:
            db.rollback()
            raise

        result = ReconciliationResult(
            success=True,
            matched=True,
            outcome=ReconciliationOutcome.reconciled,
            message=f"Payment reconciled successfully. Matched {len(created)} bill(s)",
            transaction_id=transaction_id,
            customer_id=customer.id,
            allocations=[_allocation_read(bill, applied) for _, bill, applied in created],
            payments=[PaymentRead.model_validate(row) for row, _, _ in created],
            remainder=plan.remainder,
        )
        observe_reconciliation(
            ReconciliationOutcome.reconciled.value,
            applied=plan.applied_total,
            unapplied=plan.remainder,
        )
        logger.info(
            "Reconciled transaction %s for customer %s across %d bill(s)",
            transaction_id,
            customer.id,
            len(created),
        )

        events = [
            ActivityEvent(
                actor_id=actor_id,
                action=RECONCILED_ACTION,
                entity_type="payment",
                entity_id=str(row.id),
                description=f"Auto-reconciled payment {transaction_id} for bill {bill.bill_number}",
                isp_id=customer.isp_id,
                metadata={
                    "bill_id": str(bill.id),
                    "amount": str(applied),
                    "source": source.value,
                },
            )
            for row, bill, applied in created
        ]
        if plan.remainder > 0:
            # Left as a flag for accounting; no credit record is created.
            logger.warning(
                "Payment %s exceeds outstanding bills by %s",
                transaction_id,
                plan.remainder,
            )
            events.append(
                ActivityEvent(
                    actor_id=actor_id,
                    action=OVERPAYMENT_ACTION,
                    entity_type="customer",
                    entity_id=str(customer.id),
                    description=(
                        f"Payment {transaction_id} of {payment.amount} exceeds outstanding "
                        f"bills; {plan.remainder} left unapplied"
                    ),
                    isp_id=customer.isp_id,
                    metadata={
                        "transaction_id": transaction_id,
                        "unapplied_amount": str(plan.remainder),
                    },
                )
            )
        activity_recorder.record_many(db, events)
        return result

    @staticmethod
    def get_by_transaction(db: Session, transaction_id: str) -> PaymentReconciliation | None:
        return (
            db.query(PaymentReconciliation)
            .filter(PaymentReconciliation.transaction_id == transaction_id)
            .first()
        )
