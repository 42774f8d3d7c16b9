"""Stripe payment gateway adapter.

Translates ``payment_intent.succeeded`` webhook events into normalized
payments and verifies ``Stripe-Signature`` headers.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from collections.abc import Mapping

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
    parse_epoch,
)

logger = logging.getLogger(__name__)

SUPPORTED_EVENT = "payment_intent.succeeded"

# Stripe sends these currencies in whole units rather than cents.
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
        "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
    }
)


def minor_unit_factor(currency: str | None) -> int:
    if currency and currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return 1
    return 100


def translate(event) -> NormalizedPayment | Rejected:
    if not isinstance(event, Mapping):
        return Rejected(reason="Malformed event payload")
    event_type = event.get("type")
    if event_type != SUPPORTED_EVENT:
        return Rejected(reason=EVENT_NOT_SUPPORTED, event_type=event_type)

    intent = as_mapping(as_mapping(event.get("data")).get("object"))
    metadata = as_mapping(intent.get("metadata"))
    transaction_id = first_present(intent.get("id"))
    if not transaction_id:
        return Rejected(reason="Missing payment intent id", event_type=event_type)

    currency = first_present(intent.get("currency"))
    raw_amount = intent.get("amount_received")
    if raw_amount is None:
        raw_amount = intent.get("amount")
    amount = from_minor_units(raw_amount, minor_unit_factor(currency))
    if amount is None:
        return Rejected(
            reason="Missing or invalid amount",
            event_type=event_type,
            transaction_id=transaction_id,
        )

    return build_payment(
        event_type,
        transaction_id=transaction_id,
        customer_email=first_present(
            intent.get("receipt_email"),
            metadata.get("customerEmail"),
            metadata.get("customer_email"),
        ),
        customer_phone=first_present(
            metadata.get("customerPhone"), metadata.get("customer_phone")
        ),
        amount=amount,
        method=PaymentMethod.stripe,
        payment_date=parse_epoch(intent.get("created")),
        isp_id=first_present(metadata.get("isp_id"), metadata.get("ispId")),
        currency=currency.upper() if currency else None,
    )


def verify_webhook_signature(
    body: bytes,
    signature: str,
    secret: str | None = None,
    tolerance: int | None = None,
    now: float | None = None,
) -> bool:
    """Verify a ``Stripe-Signature`` header (``t=<ts>,v1=<hex>[,v1=...]``).

    The signed payload is ``"<ts>." + body`` under HMAC-SHA256; headers older
    than ``tolerance`` seconds are refused.
    """
    secret = secret if secret is not None else settings.stripe_webhook_secret
    if not secret or not signature:
        return False
    timestamp = None
    candidates: list[str] = []
    for part in signature.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            candidates.append(value)
    if not timestamp or not candidates:
        return False
    try:
        issued_at = int(timestamp)
    except ValueError:
        return False
    if tolerance is None:
        tolerance = settings.stripe_webhook_tolerance_seconds
    current = now if now is not None else time.time()
    if tolerance and abs(current - issued_at) > tolerance:
        logger.warning("Stripe webhook timestamp outside tolerance")
        return False

    expected = hmac.new(
        secret.encode(),
        f"{timestamp}.".encode() + body,
        hashlib.sha256,
    ).hexdigest()
    return any(hmac.compare_digest(expected, candidate) for candidate in candidates)
