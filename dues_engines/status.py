"""
Module: dues_engines.status
Responsibility:
    The balance/status state machine for a single obligation.  Every mutator
    of amount_paid, late_fee, base_amount or adjustment calls
    ``resolve_state`` afterwards and writes the result back.

Architecture position:
    Engines -- pure calculation layer, zero I/O, no clock access.  ``today``
    is always passed in by the caller.

Invariants enforced:
    - ``total_amount = base_amount + late_fee + adjustment``.
    - ``balance = max(total_amount - amount_paid, 0)``; waived => 0.
    - Persisted status is one of pending / partial / paid / waived.
    - ``overdue`` is derived at read time by ``effective_status`` and is
      never persisted.
    - Waived is terminal.

State diagram:

    pending --(payment)--> partial --(payment)--> paid
       |                      |
       +------(waive)---------+----> waived (terminal)

    overdue = (pending | partial) and balance > 0 and today > due_date
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from dues_kernel.db.types import ZERO, round_money


class ObligationStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    PAID = "paid"
    WAIVED = "waived"


PERSISTED_STATUSES: frozenset[ObligationStatus] = frozenset({
    ObligationStatus.PENDING,
    ObligationStatus.PARTIAL,
    ObligationStatus.PAID,
    ObligationStatus.WAIVED,
})


@dataclass(frozen=True)
class ObligationState:
    """Result of running the state machine over an obligation's amounts."""

    total_amount: Decimal
    balance: Decimal
    status: ObligationStatus
    paid_date: date | None


def compute_total(base_amount: Decimal, late_fee: Decimal, adjustment: Decimal) -> Decimal:
    return round_money(base_amount + late_fee + adjustment)


def compute_balance(
    total_amount: Decimal,
    amount_paid: Decimal,
    status: ObligationStatus = ObligationStatus.PENDING,
) -> Decimal:
    """Remaining amount owed; never negative, zero once waived."""
    if status is ObligationStatus.WAIVED:
        return ZERO
    return max(round_money(total_amount - amount_paid), ZERO)


def resolve_state(
    *,
    base_amount: Decimal,
    late_fee: Decimal,
    adjustment: Decimal,
    amount_paid: Decimal,
    current_status: ObligationStatus | str,
    paid_date: date | None,
    today: date,
) -> ObligationState:
    """
    Recompute total, balance and persisted status.

    balance <= 0 -> paid (paid_date set once, kept on later recomputes);
    amount_paid > 0 -> partial; otherwise pending.  A paid obligation whose
    total is later raised reopens as partial and loses its paid_date.
    """
    status = ObligationStatus(current_status)
    if status not in PERSISTED_STATUSES:
        raise ValueError(f"{status.value} is derived and cannot be a stored status")

    total = compute_total(base_amount, late_fee, adjustment)

    if status is ObligationStatus.WAIVED:
        return ObligationState(total, ZERO, ObligationStatus.WAIVED, paid_date)

    balance = compute_balance(total, amount_paid)
    if balance <= 0:
        return ObligationState(total, ZERO, ObligationStatus.PAID, paid_date or today)
    if amount_paid > 0:
        return ObligationState(total, balance, ObligationStatus.PARTIAL, None)
    return ObligationState(total, balance, ObligationStatus.PENDING, None)


def waive_state(
    *,
    base_amount: Decimal,
    late_fee: Decimal,
    adjustment: Decimal,
    paid_date: date | None,
) -> ObligationState:
    """State after an administrator waives the obligation."""
    total = compute_total(base_amount, late_fee, adjustment)
    return ObligationState(total, ZERO, ObligationStatus.WAIVED, paid_date)


def effective_status(
    status: ObligationStatus | str,
    balance: Decimal,
    due_date: date | None,
    today: date,
) -> ObligationStatus:
    """Stored status, or ``overdue`` when an unpaid balance is past due."""
    status = ObligationStatus(status)
    if status in (ObligationStatus.PAID, ObligationStatus.WAIVED):
        return status
    if balance > 0 and due_date is not None and today > due_date:
        return ObligationStatus.OVERDUE
    return status


def days_overdue(
    status: ObligationStatus | str,
    balance: Decimal,
    due_date: date | None,
    today: date,
) -> int:
    if effective_status(status, balance, due_date, today) is not ObligationStatus.OVERDUE:
        return 0
    return (today - due_date).days
