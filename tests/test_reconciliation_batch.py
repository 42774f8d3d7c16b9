from datetime import datetime, timezone
from decimal import Decimal

from app.models.billing import Bill, BillStatus, Payment
from app.schemas.reconciliation import ReconciliationOutcome
from app.services import reconciliation as reconciliation_service
from app.services.reconciliation.orchestrator import PaymentReconciliations


def _assert_counts_add_up(result):
    assert result.successful + result.failed + result.already_matched == result.total
    assert [detail.index for detail in result.details] == list(range(result.total))


def test_batch_isolates_unknown_customer(db_session, make_customer, make_bill):
    payments = []
    for index in range(5):
        owner = make_customer()
        make_bill("25.00", owner=owner)
        email = "ghost@example.com" if index == 2 else owner.email
        payments.append(
            {"transaction_id": f"batch_{index}", "customer_email": email, "amount": "25.00"}
        )

    result = reconciliation_service.reconcile_batch(db_session, payments)

    assert result.total == 5
    assert result.successful == 4
    assert result.failed == 1
    assert result.already_matched == 0
    _assert_counts_add_up(result)
    failed = result.details[2]
    assert not failed.success
    assert failed.transaction_id == "batch_2"
    assert failed.result.outcome == ReconciliationOutcome.customer_not_found
    assert db_session.query(Payment).count() == 4
    statuses = [bill.status for bill in db_session.query(Bill).all()]
    assert statuses.count(BillStatus.paid) == 4
    assert statuses.count(BillStatus.pending) == 1


def test_batch_counts_replayed_transactions(db_session, customer, make_bill):
    make_bill("100.00")
    item = {"transactionId": "batch_dup", "customerEmail": customer.email, "amount": 30}

    result = reconciliation_service.reconcile_batch(db_session, [item, dict(item)])

    assert result.successful == 1
    assert result.already_matched == 1
    assert result.failed == 0
    assert result.details[1].success
    assert result.details[1].result.already_reconciled
    _assert_counts_add_up(result)
    bill = db_session.query(Bill).one()
    assert bill.paid_amount == Decimal("30.00")


def test_batch_records_invalid_items_and_continues(db_session, customer, make_bill):
    make_bill("40.00")
    payments = [
        {"transaction_id": "bad_amount", "customer_email": customer.email},
        {"transaction_id": "no_contact", "amount": "10.00"},
        "not a payment",
        {"transaction_id": "good", "customer_email": customer.email, "amount": "40.00"},
    ]

    result = reconciliation_service.reconcile_batch(db_session, payments)

    assert result.total == 4
    assert result.failed == 3
    assert result.successful == 1
    _assert_counts_add_up(result)
    assert [d.transaction_id for d in result.details] == ["bad_amount", "no_contact", None, "good"]
    assert all(d.error for d in result.details[:3])
    assert "email or phone" in result.details[1].error
    assert result.details[3].result.outcome == ReconciliationOutcome.reconciled


def test_batch_survives_unexpected_errors(db_session, customer, make_bill, monkeypatch):
    make_bill("10.00", due_date=datetime(2024, 1, 1, tzinfo=timezone.utc))
    make_bill("10.00", due_date=datetime(2024, 2, 1, tzinfo=timezone.utc))
    real_reconcile = PaymentReconciliations.reconcile

    def flaky_reconcile(db, payment, source=None, actor_id=None):
        if payment["transaction_id"] == "explodes":
            raise RuntimeError("unexpected failure")
        return real_reconcile(db, payment, source=source, actor_id=actor_id)

    monkeypatch.setattr(PaymentReconciliations, "reconcile", staticmethod(flaky_reconcile))

    result = reconciliation_service.reconcile_batch(
        db_session,
        [
            {"transaction_id": "first", "customer_email": customer.email, "amount": "10.00"},
            {"transaction_id": "explodes", "customer_email": customer.email, "amount": "10.00"},
            {"transaction_id": "third", "customer_email": customer.email, "amount": "10.00"},
        ],
    )

    assert result.successful == 2
    assert result.failed == 1
    assert result.details[1].error == "unexpected failure"
    _assert_counts_add_up(result)


def test_empty_batch(db_session):
    result = reconciliation_service.reconcile_batch(db_session, [])
    assert result.total == 0
    assert result.details == []
