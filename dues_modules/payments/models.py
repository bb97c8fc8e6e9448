"""
Payment Domain Models (``dues_modules.payments.models``).

The auditable payment row applied to exactly one obligation.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PaymentMethod(Enum):
    CASH = "cash"
    CHECK = "check"
    CARD = "card"
    BANK_ACCOUNT = "bank_account"
    VENMO = "venmo"
    ZELLE = "zelle"
    INSTALLMENT = "installment"
    OTHER = "other"


@dataclass(frozen=True)
class PaymentRecord:
    id: UUID
    obligation_id: UUID
    amount: Decimal
    method: PaymentMethod
    payment_date: date
    reference: str | None = None
    notes: str | None = None
    reconciled: bool = False
    installment_payment_id: UUID | None = None


@dataclass(frozen=True)
class PaymentApplication:
    """A recorded payment and the obligation state it produced."""
    payment: PaymentRecord
    amount_paid: Decimal
    balance: Decimal
    status: str
