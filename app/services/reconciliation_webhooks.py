"""Gateway webhook orchestration for payment reconciliation."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import GATEWAY_EVENTS
from app.models.billing import ReconciliationSource
from app.services import paystack, stripe
from app.services.gateway_events import Rejected
from app.services.reconciliation import payment_reconciliations
from app.services.reconciliation.errors import InvalidPaymentError, ReconciliationStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayAdapter:
    name: str
    source: ReconciliationSource
    translate: Callable
    verify: Callable[[bytes, str, str], bool]
    secret: Callable[[], str | None]


GATEWAYS: dict[str, GatewayAdapter] = {
    "stripe": GatewayAdapter(
        name="stripe",
        source=ReconciliationSource.stripe,
        translate=stripe.translate,
        verify=stripe.verify_webhook_signature,
        secret=lambda: settings.stripe_webhook_secret,
    ),
    "paystack": GatewayAdapter(
        name="paystack",
        source=ReconciliationSource.paystack,
        translate=paystack.translate,
        verify=paystack.verify_webhook_signature,
        secret=lambda: settings.paystack_secret_key,
    ),
}


def process_gateway_webhook(
    *, db: Session, gateway: str, body: bytes, signature: str
) -> JSONResponse:
    adapter = GATEWAYS.get(gateway)
    if not adapter:
        return JSONResponse({"status": "unknown gateway"}, status_code=404)

    secret = adapter.secret()
    if secret and not adapter.verify(body, signature, secret):
        logger.warning("Invalid %s webhook signature", adapter.name)
        GATEWAY_EVENTS.labels(gateway=adapter.name, disposition="invalid_signature").inc()
        return JSONResponse({"status": "invalid signature"}, status_code=400)

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse({"status": "invalid JSON"}, status_code=400)

    translated = adapter.translate(payload)
    if isinstance(translated, Rejected):
        if translated.not_supported:
            logger.info("Ignoring %s event %s", adapter.name, translated.event_type)
            GATEWAY_EVENTS.labels(gateway=adapter.name, disposition="ignored").inc()
            return JSONResponse(
                {"status": "ignored", "reason": translated.reason}, status_code=200
            )
        logger.warning(
            "Rejected %s event %s (%s): %s",
            adapter.name,
            translated.event_type,
            translated.transaction_id,
            translated.reason,
        )
        GATEWAY_EVENTS.labels(gateway=adapter.name, disposition="rejected").inc()
        return JSONResponse(
            {"status": "rejected", "reason": translated.reason}, status_code=200
        )

    try:
        result = payment_reconciliations.reconcile(db, translated, source=adapter.source)
    except InvalidPaymentError as exc:
        GATEWAY_EVENTS.labels(gateway=adapter.name, disposition="rejected").inc()
        return JSONResponse({"status": "rejected", "reason": str(exc)}, status_code=200)
    except ReconciliationStoreError as exc:
        # Non-2xx makes the gateway redeliver; replays are safe.
        logger.error("%s webhook reconciliation failed: %s", adapter.name, exc)
        GATEWAY_EVENTS.labels(gateway=adapter.name, disposition="retry").inc()
        return JSONResponse({"status": "retry"}, status_code=503)

    GATEWAY_EVENTS.labels(gateway=adapter.name, disposition=result.outcome.value).inc()
    # Misses are acknowledged; recovery is a re-submit through the payments or
    # batch endpoint once the customer or bill exists.
    return JSONResponse(
        {
            "status": "ok" if result.matched else "unmatched",
            "outcome": result.outcome.value,
            "transaction_id": result.transaction_id,
        },
        status_code=200,
    )
