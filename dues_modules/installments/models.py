"""
Installment Domain Models (``dues_modules.installments.models``).

Responsibility
--------------
Frozen dataclass value objects for installment eligibility, plans, their
scheduled installments, saved payment methods and stored processor attempts,
plus the result shapes returned by ``InstallmentService``.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PlanStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InstallmentStatus(Enum):
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class IntentStatus(Enum):
    """Stored status of one processor charge attempt."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REQUIRES_ACTION = "requires_action"

    @property
    def is_open(self) -> bool:
        return self in (IntentStatus.PENDING, IntentStatus.PROCESSING, IntentStatus.REQUIRES_ACTION)


@dataclass(frozen=True)
class InstallmentEligibility:
    obligation_id: UUID
    is_eligible: bool
    allowed_sizes: tuple[int, ...]
    notes: str | None = None

    def allows(self, num_installments: int) -> bool:
        return self.is_eligible and num_installments in self.allowed_sizes


@dataclass(frozen=True)
class SavedPaymentMethod:
    id: UUID
    member_id: UUID
    processor_method_id: str
    method_type: str  # "card" | "bank_account"
    last4: str | None = None
    brand: str | None = None
    is_default: bool = False


@dataclass(frozen=True)
class InstallmentPayment:
    id: UUID
    plan_id: UUID
    installment_number: int
    amount: Decimal
    scheduled_date: date
    status: InstallmentStatus
    processor_payment_intent_id: str | None = None
    paid_at: datetime | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class InstallmentPlan:
    id: UUID
    obligation_id: UUID
    member_id: UUID
    num_installments: int
    installments_paid: int
    total_amount: Decimal
    deadline_date: date
    next_payment_date: date | None
    status: PlanStatus
    payment_method_id: UUID | None = None
    installments: tuple[InstallmentPayment, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PlanCreationResult:
    """
    Outcome of ``create_plan``.

    ``first_payment_status`` is the installment #1 status after creation:
    ``paid`` (settled), or ``processing`` (awaiting asynchronous settlement or
    customer authentication, in which case ``client_secret`` is set).
    """
    plan: InstallmentPlan
    first_payment_status: InstallmentStatus
    payment_intent_id: str | None = None
    client_secret: str | None = None
    requires_action: bool = False


@dataclass(frozen=True)
class ChargeFailure:
    installment_payment_id: UUID
    plan_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class ChargeRunResult:
    """Outcome of one ``charge_due_installments`` run."""
    as_of: date
    charged: int
    pending: int
    failures: tuple[ChargeFailure, ...] = ()

    @property
    def failed(self) -> int:
        return len(self.failures)
