"""Paystack payment gateway adapter.

Translates ``charge.success`` webhook events into normalized payments and
verifies the ``X-Paystack-Signature`` header.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping
from decimal import Decimal

from app.config import settings
from app.models.billing import PaymentMethod
from app.schemas.reconciliation import NormalizedPayment
from app.services.gateway_events import (
    EVENT_NOT_SUPPORTED,
    Rejected,
    as_mapping,
    build_payment,
    first_present,
    from_minor_units,
    parse_iso,
)

logger = logging.getLogger(__name__)

SUPPORTED_EVENT = "charge.success"
KOBO_PER_NAIRA = 100


def kobo_to_naira(kobo: int) -> Decimal | None:
    """Convert kobo back to naira."""
    return from_minor_units(kobo, KOBO_PER_NAIRA)


def translate(event) -> NormalizedPayment | Rejected:
    if not isinstance(event, Mapping):
        return Rejected(reason="Malformed event payload")
    event_type = event.get("event")
    if event_type != SUPPORTED_EVENT:
        return Rejected(reason=EVENT_NOT_SUPPORTED, event_type=event_type)

    data = as_mapping(event.get("data"))
    transaction_id = first_present(data.get("reference"), data.get("id"))
    if not transaction_id:
        return Rejected(reason="Missing transaction reference", event_type=event_type)
    status = data.get("status")
    if status and status != "success":
        return Rejected(
            reason=f"Charge status is {status}",
            event_type=event_type,
            transaction_id=transaction_id,
        )

    amount = kobo_to_naira(data.get("amount"))
    if amount is None:
        return Rejected(
            reason="Missing or invalid amount",
            event_type=event_type,
            transaction_id=transaction_id,
        )

    customer = as_mapping(data.get("customer"))
    # Paystack sends metadata as "" when none was attached.
    metadata = as_mapping(data.get("metadata"))
    currency = first_present(data.get("currency"))
    return build_payment(
        event_type,
        transaction_id=transaction_id,
        customer_email=first_present(
            customer.get("email"), metadata.get("customer_email")
        ),
        customer_phone=first_present(
            customer.get("phone"), metadata.get("customer_phone")
        ),
        amount=amount,
        method=PaymentMethod.paystack,
        payment_date=parse_iso(first_present(data.get("paid_at"), data.get("paidAt"))),
        isp_id=first_present(metadata.get("isp_id")),
        currency=currency.upper() if currency else None,
    )


def verify_webhook_signature(
    body: bytes, signature: str, secret: str | None = None
) -> bool:
    """Verify Paystack webhook HMAC-SHA512 signature.

    Args:
        body: Raw request body bytes.
        signature: Value of the X-Paystack-Signature header.
        secret: Secret key; defaults to ``PAYSTACK_SECRET_KEY``.

    Returns:
        True if the signature is valid.
    """
    secret_key = secret if secret is not None else settings.paystack_secret_key
    if not secret_key or not signature:
        return False

    expected = hmac.new(
        secret_key.encode(),
        body,
        hashlib.sha512,
    ).hexdigest()

    return hmac.compare_digest(expected, signature)
