import hashlib
import hmac
import json
from datetime import datetime, timezone
from decimal import Decimal

from app.models.billing import PaymentMethod
from app.schemas.reconciliation import NormalizedPayment
from app.services import paystack, stripe
from app.services.gateway_events import Rejected, from_minor_units, parse_iso


def _stripe_event(**intent_overrides):
    intent = {
        "id": "pi_123",
        "amount": 5000,
        "amount_received": 5000,
        "currency": "usd",
        "receipt_email": "Payer@Example.com",
        "created": 1704067200,
        "metadata": {},
    }
    intent.update(intent_overrides)
    return {"id": "evt_1", "type": "payment_intent.succeeded", "data": {"object": intent}}


def _paystack_event(**data_overrides):
    data = {
        "id": 302961,
        "status": "success",
        "reference": "ref_abc",
        "amount": 250050,
        "currency": "NGN",
        "paid_at": "2024-01-01T10:30:00.000Z",
        "customer": {"email": "payer@example.com", "phone": None},
        "metadata": "",
    }
    data.update(data_overrides)
    return {"event": "charge.success", "data": data}


def test_stripe_translates_succeeded_intent():
    payment = stripe.translate(_stripe_event())
    assert isinstance(payment, NormalizedPayment)
    assert payment.transaction_id == "pi_123"
    assert payment.amount == Decimal("50.00")
    assert payment.customer_email == "payer@example.com"
    assert payment.method == PaymentMethod.stripe
    assert payment.currency == "USD"
    assert payment.payment_date == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_stripe_falls_back_to_amount_and_metadata_contact():
    event = _stripe_event(
        amount_received=None,
        amount=1999,
        receipt_email=None,
        metadata={"customerEmail": "meta@example.com", "customerPhone": "+15550100"},
    )
    payment = stripe.translate(event)
    assert payment.amount == Decimal("19.99")
    assert payment.customer_email == "meta@example.com"
    assert payment.customer_phone == "+15550100"


def test_stripe_zero_decimal_currency_is_not_divided():
    payment = stripe.translate(_stripe_event(amount_received=1200, currency="jpy"))
    assert payment.amount == Decimal("1200.00")


def test_stripe_other_events_are_not_supported():
    rejected = stripe.translate({"type": "charge.refunded", "data": {"object": {}}})
    assert isinstance(rejected, Rejected)
    assert rejected.not_supported
    assert rejected.event_type == "charge.refunded"


def test_stripe_event_without_contact_is_rejected():
    rejected = stripe.translate(_stripe_event(receipt_email=None))
    assert isinstance(rejected, Rejected)
    assert not rejected.not_supported
    assert rejected.transaction_id == "pi_123"


def test_stripe_event_without_intent_id_is_rejected():
    rejected = stripe.translate(_stripe_event(id=None))
    assert isinstance(rejected, Rejected)
    assert rejected.reason == "Missing payment intent id"


def test_stripe_signature_round_trip():
    body = json.dumps(_stripe_event()).encode()
    timestamp = 1704067200
    digest = hmac.new(b"whsec_test", f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    header = f"t={timestamp},v1={digest}"

    assert stripe.verify_webhook_signature(body, header, "whsec_test", now=timestamp + 10)
    assert not stripe.verify_webhook_signature(body + b" ", header, "whsec_test", now=timestamp)
    assert not stripe.verify_webhook_signature(body, header, "other", now=timestamp)
    assert not stripe.verify_webhook_signature(
        body, header, "whsec_test", tolerance=300, now=timestamp + 301
    )
    assert not stripe.verify_webhook_signature(body, "garbage", "whsec_test", now=timestamp)


def test_paystack_translates_charge_success():
    payment = paystack.translate(_paystack_event())
    assert isinstance(payment, NormalizedPayment)
    assert payment.transaction_id == "ref_abc"
    assert payment.amount == Decimal("2500.50")
    assert payment.method == PaymentMethod.paystack
    assert payment.currency == "NGN"
    assert payment.payment_date == datetime(2024, 1, 1, 10, 30, tzinfo=timezone.utc)


def test_paystack_uses_metadata_contact_and_id_fallback():
    payment = paystack.translate(
        _paystack_event(
            reference=None,
            customer={},
            metadata={"customer_phone": "+2348000000000"},
        )
    )
    assert payment.transaction_id == "302961"
    assert payment.customer_email is None
    assert payment.customer_phone == "+2348000000000"


def test_paystack_failed_charge_is_rejected():
    rejected = paystack.translate(_paystack_event(status="failed"))
    assert isinstance(rejected, Rejected)
    assert not rejected.not_supported
    assert rejected.transaction_id == "ref_abc"


def test_paystack_other_events_are_not_supported():
    rejected = paystack.translate({"event": "transfer.success", "data": {}})
    assert rejected.not_supported


def test_paystack_signature():
    body = json.dumps(_paystack_event()).encode()
    signature = hmac.new(b"sk_test", body, hashlib.sha512).hexdigest()
    assert paystack.verify_webhook_signature(body, signature, "sk_test")
    assert not paystack.verify_webhook_signature(body, signature, "sk_other")
    assert not paystack.verify_webhook_signature(body, "", "sk_test")


def test_minor_unit_helpers():
    assert paystack.kobo_to_naira(150) == Decimal("1.50")
    assert from_minor_units("2500", 100) == Decimal("25.00")
    assert from_minor_units(12.5, 100) is None
    assert from_minor_units(True, 100) is None
    assert from_minor_units("abc", 100) is None
    assert parse_iso("2024-03-01T00:00:00") == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert parse_iso("not a date") is None


def test_oversized_minor_unit_amount_is_rejected():
    assert from_minor_units(10**40, 100) is None
    rejected = stripe.translate(_stripe_event(amount_received=10**40))
    assert isinstance(rejected, Rejected)
    assert rejected.reason == "Missing or invalid amount"

    too_large = paystack.translate(_paystack_event(amount=10**15))
    assert isinstance(too_large, Rejected)
    assert not too_large.not_supported
    assert too_large.transaction_id == "ref_abc"
