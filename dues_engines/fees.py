"""
Module: dues_engines.fees
Responsibility:
    Convert a base charge and a payment-method class into the processor fee,
    the amount charged to the payer and the net amount the organization
    receives.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Decimal-only arithmetic; every output is rounded to the cent with
      ROUND_HALF_UP.
    - Card: the payer covers the processor fee, so
      ``total_charge = (amount + fixed) / (1 - rate)`` and
      ``net_amount = amount - platform_fee``.
    - Bank account: the organization absorbs the fee, so
      ``total_charge = amount`` and
      ``net_amount = amount - processor_fee - platform_fee``.

Usage:
    from dues_engines.fees import PaymentMethodClass, calculate_fees

    fees = calculate_fees(
        amount=Decimal("100.00"),
        method_class=PaymentMethodClass.CARD,
        schedule=FeeSchedule(),
    )
    fees.total_charge  # Decimal("103.30")
    fees.net_amount    # Decimal("99.00")
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from dues_config.schema import FeeSchedule
from dues_engines.tracer import traced_engine
from dues_kernel.db.types import round_money


class PaymentMethodClass(str, Enum):
    """Processor instrument class; drives which fee rule applies."""

    CARD = "card"
    BANK_ACCOUNT = "bank_account"

    @classmethod
    def parse(cls, value: str | PaymentMethodClass) -> PaymentMethodClass:
        if isinstance(value, cls):
            return value
        # Processors report bank transfers as us_bank_account
        if value in ("us_bank_account", "ach"):
            return cls.BANK_ACCOUNT
        return cls(value)


@dataclass(frozen=True)
class FeeBreakdown:
    """
    Fee split for one charge.

    ``processor_fee`` is what the processor keeps; ``platform_fee`` is the
    platform's share of the base amount; ``total_charge`` is debited from the
    payer; ``net_amount`` is transferred to the organization's payout
    account.
    """

    amount: Decimal
    method_class: PaymentMethodClass
    processor_fee: Decimal
    platform_fee: Decimal
    total_charge: Decimal
    net_amount: Decimal


def card_total_charge(amount: Decimal, schedule: FeeSchedule) -> Decimal:
    """Gross-up so the payer covers the percentage and fixed card fee."""
    gross = (amount + schedule.card_fixed_fee) / (Decimal("1") - schedule.card_rate)
    return round_money(gross)


def ach_processor_fee(amount: Decimal, schedule: FeeSchedule) -> Decimal:
    return round_money(min(amount * schedule.ach_rate, schedule.ach_fee_cap))


def platform_fee(amount: Decimal, schedule: FeeSchedule) -> Decimal:
    return round_money(amount * schedule.platform_rate)


@traced_engine("fees", "1.0", fingerprint_fields=("amount", "method_class"))
def calculate_fees(
    *,
    amount: Decimal,
    method_class: PaymentMethodClass | str,
    schedule: FeeSchedule,
) -> FeeBreakdown:
    """
    Compute the fee breakdown for charging ``amount``.

    Raises:
        ValueError: if amount is not positive or method_class is unknown.
    """
    amount = round_money(Decimal(amount))
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")
    method = PaymentMethodClass.parse(method_class)
    platform = platform_fee(amount, schedule)

    if method is PaymentMethodClass.CARD:
        total = card_total_charge(amount, schedule)
        processor = total - amount
        net = amount - platform
    else:
        processor = ach_processor_fee(amount, schedule)
        total = amount
        net = amount - processor - platform

    return FeeBreakdown(
        amount=amount,
        method_class=method,
        processor_fee=processor,
        platform_fee=platform,
        total_charge=total,
        net_amount=net,
    )
