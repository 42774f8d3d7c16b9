"""Exceptions raised by the payment reconciliation engine.

Expected conditions (unknown customer, duplicate transaction, nothing to
pay) are reported as outcomes on the result object, not raised.
"""


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class InvalidPaymentError(ReconciliationError, ValueError):
    """The payment notification is missing data required to reconcile it."""


class ReconciliationStoreError(ReconciliationError):
    """A query or commit failed; retrying with the same transaction id is safe."""

    def __init__(self, message: str, transaction_id: str | None = None):
        super().__init__(message)
        self.transaction_id = transaction_id
