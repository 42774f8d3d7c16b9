"""Allocation of a payment amount across a customer's outstanding bills.

Pure decision logic: no session access, no mutation of the bills passed in.
Bills are duck-typed; anything exposing ``total_amount``, ``paid_amount``,
``status`` and ``due_date`` works, which keeps the engine testable with
plain objects.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from app.models.billing import BillStatus
from app.services.common import ZERO, round_money


@dataclass(frozen=True)
class AllocationLine:
    bill: Any
    amount: Decimal


@dataclass(frozen=True)
class AllocationPlan:
    lines: list[AllocationLine] = field(default_factory=list)
    remainder: Decimal = ZERO

    @property
    def applied_total(self) -> Decimal:
        return round_money(sum((line.amount for line in self.lines), ZERO))

    @property
    def is_overpayment(self) -> bool:
        return bool(self.lines) and self.remainder > 0


def owed_amount(bill) -> Decimal:
    total = round_money(bill.total_amount or ZERO)
    paid = round_money(bill.paid_amount or ZERO)
    return round_money(total - paid)


def outstanding_sort_key(bill) -> tuple:
    """Oldest due date first; on the same date, overdue before pending/partial."""
    due = bill.due_date
    if due is not None and due.tzinfo is not None:
        due = due.astimezone(timezone.utc).replace(tzinfo=None)
    status = getattr(bill.status, "value", bill.status)
    return (
        due is None,
        due or datetime.max,
        0 if status == BillStatus.overdue.value else 1,
    )


def allocate(outstanding_bills: Sequence, amount: Decimal) -> AllocationPlan:
    """Apply ``amount`` to ``outstanding_bills`` in the order given.

    Each bill receives ``min(remaining, owed)``; bills with nothing owed are
    skipped. Whatever is left once the bills run out is the remainder, so
    ``plan.applied_total + plan.remainder == amount`` always holds.
    """
    remaining = round_money(amount)
    if remaining <= 0:
        return AllocationPlan(lines=[], remainder=remaining)
    lines: list[AllocationLine] = []
    for bill in outstanding_bills:
        owed = owed_amount(bill)
        if owed <= 0:
            continue
        applied = min(remaining, owed)
        lines.append(AllocationLine(bill=bill, amount=applied))
        remaining = round_money(remaining - applied)
        if remaining <= 0:
            break
    return AllocationPlan(lines=lines, remainder=remaining)
