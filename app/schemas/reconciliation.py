from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.billing import BillStatus, PaymentMethod, PaymentStatus, ReconciliationSource
from app.services.common import round_money

# Largest amount a Numeric(12, 2) column holds.
MAX_PAYMENT_AMOUNT = Decimal("9999999999.99")


class ReconciliationOutcome(enum.Enum):
    reconciled = "reconciled"
    already_reconciled = "already_reconciled"
    customer_not_found = "customer_not_found"
    no_outstanding_bills = "no_outstanding_bills"


class NormalizedPayment(BaseModel):
    """Gateway-independent payment notification accepted by the engine."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    transaction_id: str = Field(
        min_length=1,
        max_length=120,
        validation_alias=AliasChoices("transaction_id", "transactionId"),
    )
    customer_email: str | None = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("customer_email", "customerEmail"),
    )
    customer_phone: str | None = Field(
        default=None,
        max_length=40,
        validation_alias=AliasChoices("customer_phone", "customerPhone"),
    )
    amount: Decimal
    method: PaymentMethod | None = None
    payment_date: datetime | None = Field(
        default=None, validation_alias=AliasChoices("payment_date", "paymentDate")
    )
    isp_id: UUID | None = Field(default=None, validation_alias=AliasChoices("isp_id", "ispId"))
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    notes: str | None = None

    @field_validator("transaction_id", mode="after")
    @classmethod
    def strip_transaction_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Transaction ID is required")
        return v

    @field_validator("customer_email", "customer_phone", mode="after")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("customer_email", mode="after")
    @classmethod
    def lower_email(cls, v: str | None) -> str | None:
        return v.lower() if v else v

    @field_validator("amount", mode="after")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("Payment amount must be a finite number")
        if abs(v) > MAX_PAYMENT_AMOUNT:
            raise ValueError(f"Payment amount must not exceed {MAX_PAYMENT_AMOUNT}")
        v = round_money(v)
        if v <= 0:
            raise ValueError("Payment amount must be greater than 0")
        return v

    @model_validator(mode="after")
    def require_contact_key(self):
        if not self.customer_email and not self.customer_phone:
            raise ValueError("Customer email or phone is required")
        return self


class BillAllocationRead(BaseModel):
    bill_id: UUID
    bill_number: str
    applied_amount: Decimal
    paid_amount: Decimal
    total_amount: Decimal
    status: BillStatus


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    bill_id: UUID
    customer_id: UUID
    isp_id: UUID
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    payment_date: datetime
    transaction_id: str | None = None
    notes: str | None = None
    created_at: datetime


class ReconciliationResult(BaseModel):
    success: bool
    matched: bool
    already_reconciled: bool = False
    outcome: ReconciliationOutcome
    message: str
    transaction_id: str
    customer_id: UUID | None = None
    allocations: list[BillAllocationRead] = Field(default_factory=list)
    payments: list[PaymentRead] = Field(default_factory=list)
    remainder: Decimal = Decimal("0.00")


class BatchItemResult(BaseModel):
    index: int
    transaction_id: str | None = None
    success: bool
    result: ReconciliationResult | None = None
    error: str | None = None


class BatchResult(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    already_matched: int = 0
    details: list[BatchItemResult] = Field(default_factory=list)


class BatchRequest(BaseModel):
    # Items stay loosely typed so one malformed row fails alone.
    payments: list[dict[str, Any]] = Field(default_factory=list)


class PaymentReconciliationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transaction_id: str
    customer_id: UUID
    isp_id: UUID
    amount: Decimal
    applied_amount: Decimal
    unapplied_amount: Decimal
    method: PaymentMethod
    source: ReconciliationSource
    payment_date: datetime
    created_at: datetime
    payments: list[PaymentRead] = Field(default_factory=list)
