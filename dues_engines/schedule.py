"""
Module: dues_engines.schedule
Responsibility:
    Split a balance into N installment amounts and lay the installments out
    on the calendar between the plan start and its deadline.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - ``sum(amounts) == balance`` exactly, to the cent.
    - ``base = floor(balance / N)`` to the cent; the remainder goes on
      installment #1, the one charged immediately.
    - Installment #1 is dated at ``start_date``; #2..N are spaced evenly and
      the last one falls on the deadline.

Usage:
    split_amount(Decimal("100.00"), 3)
    # (Decimal("33.34"), Decimal("33.33"), Decimal("33.33"))
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from dues_engines.tracer import traced_engine
from dues_kernel.db.types import floor_money, round_money


@dataclass(frozen=True)
class ScheduledInstallment:
    installment_number: int
    amount: Decimal
    scheduled_date: date


def split_amount(balance: Decimal, num_installments: int) -> tuple[Decimal, ...]:
    """
    Split ``balance`` into ``num_installments`` cent amounts.

    Raises:
        ValueError: if balance is not positive or num_installments < 1.
    """
    if num_installments < 1:
        raise ValueError("num_installments must be at least 1")
    balance = round_money(balance)
    if balance <= 0:
        raise ValueError(f"balance must be positive, got {balance}")

    base = floor_money(balance / num_installments)
    remainder = balance - base * num_installments
    return (base + remainder,) + (base,) * (num_installments - 1)


def schedule_dates(start_date: date, deadline: date, num_installments: int) -> tuple[date, ...]:
    """
    Dates for installments 1..N.

    Raises:
        ValueError: if the deadline is not after start_date.
    """
    if deadline <= start_date:
        raise ValueError(f"deadline {deadline} must be after start date {start_date}")
    if num_installments == 1:
        return (start_date,)
    span = (deadline - start_date).days
    steps = num_installments - 1
    return tuple(
        start_date + timedelta(days=span * k // steps)
        for k in range(num_installments)
    )


@traced_engine(
    "schedule", "1.0",
    fingerprint_fields=("balance", "num_installments", "start_date", "deadline"),
)
def build_schedule(
    *,
    balance: Decimal,
    num_installments: int,
    start_date: date,
    deadline: date,
) -> tuple[ScheduledInstallment, ...]:
    amounts = split_amount(balance, num_installments)
    dates = schedule_dates(start_date, deadline, num_installments)
    return tuple(
        ScheduledInstallment(installment_number=i + 1, amount=amount, scheduled_date=day)
        for i, (amount, day) in enumerate(zip(amounts, dates))
    )


def resolve_deadline(
    flexible_deadline: date | None,
    obligation_due_date: date | None,
    configuration_due_date: date | None,
) -> date | None:
    """First of: administrator-granted flexible deadline, obligation due date, configuration due date."""
    return flexible_deadline or obligation_due_date or configuration_due_date
