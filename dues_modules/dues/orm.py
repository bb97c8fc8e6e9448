"""
Dues ORM Models (``dues_modules.dues.orm``).

Responsibility
--------------
SQLAlchemy persistence models for organizations, the member roster, dues
configurations and member obligations.  Maps the frozen dataclasses in
``models.py`` to tables.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``dues_kernel.db.base`` and
sibling ``models.py``.  MUST NOT be imported by ``dues_kernel``.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dues_kernel.db.base import TrackedBase
from dues_kernel.db.types import ZERO, round_money


# ---------------------------------------------------------------------------
# 1. OrganizationModel
# ---------------------------------------------------------------------------


class OrganizationModel(TrackedBase):
    """
    ORM model for a membership organization.

    Guarantees:
        - payout_account_id is the processor connected account that receives
          net proceeds; charges_enabled mirrors the processor's readiness flag.
    """

    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    payout_account_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    charges_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    def to_dto(self):
        from dues_modules.dues.models import Organization

        return Organization(
            id=self.id,
            name=self.name,
            payout_account_id=self.payout_account_id,
            charges_enabled=self.charges_enabled,
        )

    def __repr__(self) -> str:
        return f"<OrganizationModel {self.name}>"


# ---------------------------------------------------------------------------
# 2. MemberModel
# ---------------------------------------------------------------------------


class MemberModel(TrackedBase):
    """
    ORM model for a roster member.

    Guarantees:
        - email is unique within an organization (uq_members_org_email).
    """

    __tablename__ = "members"

    __table_args__ = (
        UniqueConstraint("organization_id", "email", name="uq_members_org_email"),
        Index("idx_members_organization_id", "organization_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    cohort: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active")
    processor_customer_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def to_dto(self):
        from dues_modules.dues.models import Member, MemberStatus

        return Member(
            id=self.id,
            organization_id=self.organization_id,
            email=self.email,
            full_name=self.full_name,
            cohort=self.cohort,
            status=MemberStatus(self.status),
            processor_customer_id=self.processor_customer_id,
        )

    def __repr__(self) -> str:
        return f"<MemberModel {self.email}>"


# ---------------------------------------------------------------------------
# 3. DuesConfigurationModel
# ---------------------------------------------------------------------------


class DuesConfigurationModel(TrackedBase):
    """
    ORM model for one organizational dues period.

    Guarantees:
        - (organization_id, period_name, fiscal_year) is unique.
        - cohort_amounts is a JSON mapping cohort -> amount string.
    """

    __tablename__ = "dues_configurations"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "period_name", "fiscal_year",
            name="uq_dues_configurations_period",
        ),
    )

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    period_name: Mapped[str] = mapped_column(String(100), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False)
    default_amount: Mapped[Decimal] = mapped_column(nullable=False)
    cohort_amounts: Mapped[dict] = mapped_column(JSON, default=dict)
    due_date: Mapped[date | None] = mapped_column(nullable=True)
    late_fee_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    late_fee_amount: Mapped[Decimal] = mapped_column(default=ZERO)
    late_fee_type: Mapped[str] = mapped_column(String(20), default="fixed")
    late_fee_grace_days: Mapped[int] = mapped_column(default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def late_fee_policy(self):
        from dues_engines.late_fees import LateFeePolicy, LateFeeType

        return LateFeePolicy(
            enabled=self.late_fee_enabled,
            amount=round_money(self.late_fee_amount),
            fee_type=LateFeeType(self.late_fee_type),
            grace_days=self.late_fee_grace_days,
        )

    def to_dto(self):
        from dues_modules.dues.models import DuesConfiguration

        return DuesConfiguration(
            id=self.id,
            organization_id=self.organization_id,
            period_name=self.period_name,
            fiscal_year=self.fiscal_year,
            default_amount=round_money(self.default_amount),
            due_date=self.due_date,
            cohort_amounts={
                k: round_money(Decimal(v)) for k, v in (self.cohort_amounts or {}).items()
            },
            late_fee_policy=self.late_fee_policy(),
            is_current=self.is_current,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<DuesConfigurationModel {self.period_name} {self.fiscal_year}>"


# ---------------------------------------------------------------------------
# 4. MemberObligationModel
# ---------------------------------------------------------------------------


class MemberObligationModel(TrackedBase):
    """
    ORM model for one member's dues under one configuration.

    Guarantees:
        - (member_id, configuration_id) is unique (uq_member_obligations_member_config).
        - total_amount / balance / status / paid_date are written only by the
          state machine (see ``dues_modules._obligation_helpers.apply_state``).
        - version is an optimistic lock counter; a lost update raises
          StaleDataError at flush.
    """

    __tablename__ = "member_obligations"

    __table_args__ = (
        UniqueConstraint(
            "member_id", "configuration_id",
            name="uq_member_obligations_member_config",
        ),
        Index("idx_member_obligations_configuration_id", "configuration_id"),
        Index("idx_member_obligations_status", "status"),
    )

    member_id: Mapped[UUID] = mapped_column(ForeignKey("members.id"), nullable=False)
    configuration_id: Mapped[UUID] = mapped_column(
        ForeignKey("dues_configurations.id"), nullable=False
    )
    base_amount: Mapped[Decimal] = mapped_column(nullable=False)
    late_fee: Mapped[Decimal] = mapped_column(default=ZERO)
    late_fee_assessed_on: Mapped[date | None] = mapped_column(nullable=True)
    adjustment: Mapped[Decimal] = mapped_column(default=ZERO)
    adjustment_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount_paid: Mapped[Decimal] = mapped_column(default=ZERO)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    balance: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    due_date: Mapped[date | None] = mapped_column(nullable=True)
    paid_date: Mapped[date | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    flexible_plan_deadline: Mapped[date | None] = mapped_column(nullable=True)
    flexible_plan_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    member: Mapped["MemberModel"] = relationship()
    configuration: Mapped["DuesConfigurationModel"] = relationship()

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        from dues_engines.status import ObligationStatus
        from dues_modules.dues.models import MemberObligation

        return MemberObligation(
            id=self.id,
            member_id=self.member_id,
            configuration_id=self.configuration_id,
            base_amount=round_money(self.base_amount),
            late_fee=round_money(self.late_fee),
            adjustment=round_money(self.adjustment),
            amount_paid=round_money(self.amount_paid),
            total_amount=round_money(self.total_amount),
            balance=round_money(self.balance),
            status=ObligationStatus(self.status),
            due_date=self.due_date,
            paid_date=self.paid_date,
            late_fee_assessed_on=self.late_fee_assessed_on,
            adjustment_reason=self.adjustment_reason,
            notes=self.notes,
            flexible_plan_deadline=self.flexible_plan_deadline,
            flexible_plan_notes=self.flexible_plan_notes,
        )

    def __repr__(self) -> str:
        return f"<MemberObligationModel {self.id} {self.status} balance={self.balance}>"
