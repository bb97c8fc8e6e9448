"""
Module: dues_engines.late_fees
Responsibility:
    Late-fee policy value object and the pure rules used by the late-fee
    sweep: whether an obligation qualifies, and how much to charge.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - An obligation qualifies only when balance > 0, it is not waived, the
      grace period has fully elapsed (``due_date + grace_days < as_of``)
      and it carries no prior assessment marker.  The marker, not
      ``late_fee > 0``, is the once-per-obligation guard, so manual
      adjustments never block or trigger a sweep.
    - Percentage fees are a percent of base_amount (5 means 5%), rounded
      half-up to the cent.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum

from dues_config.schema import BalanceTier
from dues_engines.status import ObligationStatus
from dues_kernel.db.types import ZERO, round_money


class LateFeeType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


@dataclass(frozen=True)
class LateFeePolicy:
    """Late-fee settings of one dues configuration."""

    enabled: bool = False
    amount: Decimal = ZERO
    fee_type: LateFeeType = LateFeeType.FIXED
    grace_days: int = 0

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("late fee amount cannot be negative")
        if self.grace_days < 0:
            raise ValueError("grace_days cannot be negative")
        if self.fee_type is LateFeeType.PERCENTAGE and self.amount > Decimal("100"):
            raise ValueError("percentage late fee cannot exceed 100")
        if self.enabled and self.amount == 0:
            raise ValueError("an enabled late fee policy needs a positive amount")


def grace_period_end(due_date: date, grace_days: int) -> date:
    """Last day on which no late fee can be assessed."""
    return due_date + timedelta(days=grace_days)


def is_late_fee_applicable(
    *,
    policy: LateFeePolicy,
    balance: Decimal,
    status: ObligationStatus | str,
    due_date: date | None,
    as_of: date,
    already_assessed: bool,
) -> bool:
    if not policy.enabled or already_assessed:
        return False
    if ObligationStatus(status) is ObligationStatus.WAIVED:
        return False
    if balance <= 0 or due_date is None:
        return False
    return grace_period_end(due_date, policy.grace_days) < as_of


def compute_late_fee(policy: LateFeePolicy, base_amount: Decimal) -> Decimal:
    if policy.fee_type is LateFeeType.PERCENTAGE:
        return round_money(base_amount * policy.amount / Decimal("100"))
    return round_money(policy.amount)


def balance_in_tiers(balance: Decimal, tiers: Iterable[BalanceTier]) -> bool:
    """True when ``balance`` falls in any of the selected tiers."""
    return any(t.contains(balance) for t in tiers)
