"""Tests for reconciliation Celery tasks."""

import uuid
from unittest.mock import MagicMock, patch

import pytest

from app.schemas.reconciliation import BatchResult, ReconciliationOutcome, ReconciliationResult
from app.services.reconciliation.errors import ReconciliationStoreError


class TestReconcilePaymentTask:
    def test_returns_json_safe_result(self):
        mock_session = MagicMock()
        customer_id = uuid.uuid4()
        result = ReconciliationResult(
            success=True,
            matched=True,
            outcome=ReconciliationOutcome.reconciled,
            message="ok",
            transaction_id="task_1",
            customer_id=customer_id,
        )
        payload = {"transaction_id": "task_1", "customer_email": "a@example.com", "amount": "5"}

        with patch("app.tasks.reconciliation.SessionLocal", return_value=mock_session):
            with patch(
                "app.tasks.reconciliation.reconciliation_service.payment_reconciliations.reconcile",
                return_value=result,
            ) as mock_reconcile:
                from app.tasks.reconciliation import reconcile_payment

                output = reconcile_payment(payload, "stripe")

        mock_reconcile.assert_called_once_with(mock_session, payload, source="stripe")
        mock_session.close.assert_called_once()
        assert output["outcome"] == "reconciled"
        assert output["customer_id"] == str(customer_id)
        assert output["remainder"] == "0.00"

    def test_store_error_propagates_and_closes_session(self):
        mock_session = MagicMock()

        with patch("app.tasks.reconciliation.SessionLocal", return_value=mock_session):
            with patch(
                "app.tasks.reconciliation.reconciliation_service.payment_reconciliations.reconcile",
                side_effect=ReconciliationStoreError("db down", transaction_id="task_2"),
            ):
                from app.tasks.reconciliation import reconcile_payment

                with pytest.raises(ReconciliationStoreError, match="db down"):
                    reconcile_payment({"transaction_id": "task_2"})

        mock_session.close.assert_called_once()


class TestReconcileBatchTask:
    def test_runs_batch_in_own_session(self):
        mock_session = MagicMock()
        payments = [{"transaction_id": "b1"}, {"transaction_id": "b2"}]

        with patch("app.tasks.reconciliation.SessionLocal", return_value=mock_session):
            with patch(
                "app.tasks.reconciliation.reconciliation_service.reconcile_batch",
                return_value=BatchResult(total=2, successful=1, failed=1),
            ) as mock_batch:
                from app.tasks.reconciliation import reconcile_payment_batch

                output = reconcile_payment_batch(payments)

        mock_batch.assert_called_once_with(mock_session, payments)
        mock_session.close.assert_called_once()
        assert output == {
            "total": 2,
            "successful": 1,
            "failed": 1,
            "already_matched": 0,
            "details": [],
        }


def test_batch_task_against_database(db_session, customer, make_bill):
    make_bill("12.00")
    with patch("app.tasks.reconciliation.SessionLocal", return_value=db_session):
        from app.tasks.reconciliation import reconcile_payment_batch

        output = reconcile_payment_batch(
            [{"transaction_id": "db_task", "customer_email": customer.email, "amount": "12.00"}]
        )

    assert output["successful"] == 1
    assert output["details"][0]["result"]["allocations"][0]["status"] == "paid"
