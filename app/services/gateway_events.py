"""Shared helpers for translating gateway events into normalized payments."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from pydantic import ValidationError

from app.schemas.reconciliation import NormalizedPayment
from app.services.common import round_money

EVENT_NOT_SUPPORTED = "Event type not supported"


@dataclass(frozen=True)
class Rejected:
    """An event the adapter will not turn into a payment."""

    reason: str
    event_type: str | None = None
    transaction_id: str | None = None

    @property
    def not_supported(self) -> bool:
        return self.reason == EVENT_NOT_SUPPORTED


def as_mapping(value) -> Mapping:
    return value if isinstance(value, Mapping) else {}


def first_present(*values) -> str | None:
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def from_minor_units(value, factor: int) -> Decimal | None:
    """Convert an integer minor-unit amount (cents, kobo) to a decimal amount."""
    if value is None or isinstance(value, bool):
        return None
    try:
        minor = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if minor != value and str(minor) != str(value).strip():
        return None
    try:
        return round_money(Decimal(minor) / Decimal(factor))
    except InvalidOperation:
        return None


def parse_epoch(value) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def parse_iso(value) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_payment(event_type: str | None, **fields) -> NormalizedPayment | Rejected:
    try:
        return NormalizedPayment(**fields)
    except ValidationError as exc:
        reason = "; ".join(str(error.get("msg")) for error in exc.errors())
        return Rejected(
            reason=reason,
            event_type=event_type,
            transaction_id=fields.get("transaction_id"),
        )
