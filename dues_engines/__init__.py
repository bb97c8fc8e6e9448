"""
Module: dues_engines
Responsibility:
    Pure calculation engines for the dues lifecycle: fee math, the
    balance/status state machine, late-fee rules and installment schedules.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    MUST NOT import dues_modules or dues_services.

Invariants enforced:
    - Engines never read the clock; dates are passed in by services.
    - Decimal-only arithmetic, cent rounding via dues_kernel.db.types.
"""

from dues_engines.fees import (
    FeeBreakdown,
    PaymentMethodClass,
    calculate_fees,
)
from dues_engines.late_fees import (
    LateFeePolicy,
    LateFeeType,
    balance_in_tiers,
    compute_late_fee,
    is_late_fee_applicable,
)
from dues_engines.schedule import (
    ScheduledInstallment,
    build_schedule,
    resolve_deadline,
    split_amount,
)
from dues_engines.status import (
    ObligationState,
    ObligationStatus,
    days_overdue,
    effective_status,
    resolve_state,
    waive_state,
)

__all__ = [
    "FeeBreakdown",
    "PaymentMethodClass",
    "calculate_fees",
    "LateFeePolicy",
    "LateFeeType",
    "balance_in_tiers",
    "compute_late_fee",
    "is_late_fee_applicable",
    "ScheduledInstallment",
    "build_schedule",
    "resolve_deadline",
    "split_amount",
    "ObligationState",
    "ObligationStatus",
    "days_overdue",
    "effective_status",
    "resolve_state",
    "waive_state",
]
