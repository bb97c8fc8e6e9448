"""
Dues Domain Models (``dues_modules.dues.models``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of dues management:
organizations, members, dues configurations, member obligations, and the
result/read-model shapes returned by ``DuesService``.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal`` rounded to cents.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from dues_engines.late_fees import LateFeePolicy
from dues_engines.status import ObligationStatus, days_overdue, effective_status


class MemberStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ALUMNI = "alumni"


@dataclass(frozen=True)
class Organization:
    """A membership organization and its connected payout account."""
    id: UUID
    name: str
    payout_account_id: str | None = None
    charges_enabled: bool = False


@dataclass(frozen=True)
class Member:
    id: UUID
    organization_id: UUID
    email: str
    full_name: str
    cohort: str | None = None  # "Freshman", "Sophomore", "Graduate", ...
    status: MemberStatus = MemberStatus.ACTIVE
    processor_customer_id: str | None = None


@dataclass(frozen=True)
class DuesConfiguration:
    """Dues policy for one organizational period."""
    id: UUID
    organization_id: UUID
    period_name: str
    fiscal_year: int
    default_amount: Decimal
    due_date: date | None
    cohort_amounts: dict[str, Decimal] = field(default_factory=dict)
    late_fee_policy: LateFeePolicy = field(default_factory=LateFeePolicy)
    is_current: bool = False
    notes: str | None = None

    def amount_for(self, cohort: str | None) -> Decimal:
        """Cohort override when one exists, else the default charge."""
        if cohort is not None and cohort in self.cohort_amounts:
            return self.cohort_amounts[cohort]
        return self.default_amount


@dataclass(frozen=True)
class MemberObligation:
    """
    One member's dues for one configuration.

    ``status`` is the persisted status; call ``effective_status(today)`` for
    the read-time status that includes ``overdue``.
    """
    id: UUID
    member_id: UUID
    configuration_id: UUID
    base_amount: Decimal
    late_fee: Decimal
    adjustment: Decimal
    amount_paid: Decimal
    total_amount: Decimal
    balance: Decimal
    status: ObligationStatus
    due_date: date | None = None
    paid_date: date | None = None
    late_fee_assessed_on: date | None = None
    adjustment_reason: str | None = None
    notes: str | None = None
    flexible_plan_deadline: date | None = None
    flexible_plan_notes: str | None = None

    def effective_status(self, today: date) -> ObligationStatus:
        return effective_status(self.status, self.balance, self.due_date, today)

    def days_overdue(self, today: date) -> int:
        return days_overdue(self.status, self.balance, self.due_date, today)


@dataclass(frozen=True)
class AssignmentFilters:
    """Roster filters for bulk assignment; None means "any"."""
    cohort: str | None = None
    member_status: MemberStatus | None = MemberStatus.ACTIVE


@dataclass(frozen=True)
class BulkAssignmentError:
    member_id: UUID
    email: str
    code: str
    message: str


@dataclass(frozen=True)
class BulkAssignmentResult:
    configuration_id: UUID
    assigned: int
    skipped: int
    errors: tuple[BulkAssignmentError, ...] = ()
    obligation_ids: tuple[UUID, ...] = ()

    @property
    def failed(self) -> int:
        return len(self.errors)


@dataclass(frozen=True)
class ObligationSummary:
    """Flat export row: one obligation with its computed fields."""
    obligation_id: UUID
    member_id: UUID
    member_name: str
    member_email: str
    cohort: str | None
    base_amount: Decimal
    late_fee: Decimal
    adjustment: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: ObligationStatus
    due_date: date | None
    paid_date: date | None
    days_overdue: int

    def as_row(self) -> dict[str, str]:
        """String-valued mapping for CSV writers."""
        return {
            "obligation_id": str(self.obligation_id),
            "member_name": self.member_name,
            "member_email": self.member_email,
            "cohort": self.cohort or "",
            "base_amount": str(self.base_amount),
            "late_fee": str(self.late_fee),
            "adjustment": str(self.adjustment),
            "total_amount": str(self.total_amount),
            "amount_paid": str(self.amount_paid),
            "balance": str(self.balance),
            "status": self.status.value,
            "due_date": self.due_date.isoformat() if self.due_date else "",
            "paid_date": self.paid_date.isoformat() if self.paid_date else "",
            "days_overdue": str(self.days_overdue),
        }


@dataclass(frozen=True)
class ConfigurationStats:
    configuration_id: UUID
    total_members: int
    total_expected: Decimal
    total_collected: Decimal
    total_outstanding: Decimal
    total_late_fees: Decimal
    status_counts: dict[str, int]
    members_paid: int
    payment_rate: Decimal  # collected / expected, percent with one decimal
