"""
Installment Module.

Eligibility, multi-payment plans charged through the payment processor,
settlement callbacks and scheduled-charge runs.
"""

from dues_modules.installments.models import (
    ChargeRunResult,
    InstallmentEligibility,
    InstallmentPayment,
    InstallmentPlan,
    InstallmentStatus,
    IntentStatus,
    PlanCreationResult,
    PlanStatus,
    SavedPaymentMethod,
)

__all__ = [
    "ChargeRunResult",
    "InstallmentEligibility",
    "InstallmentPayment",
    "InstallmentPlan",
    "InstallmentStatus",
    "IntentStatus",
    "PlanCreationResult",
    "PlanStatus",
    "SavedPaymentMethod",
]
