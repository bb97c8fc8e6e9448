"""
Installment ORM Models (``dues_modules.installments.orm``).

Responsibility
--------------
SQLAlchemy persistence models for installment eligibility, plans and their
scheduled installments, member-scoped saved payment methods and the stored
processor charge attempts that settlement callbacks reconcile against.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``dues_kernel.db.base``.

Invariants enforced
-------------------
* One eligibility row per obligation.
* At most one *active* plan per obligation (partial unique index).
* Installment numbers are unique within a plan.
* Processor intent ids are unique; method ids are unique per member.
"""

from datetime import date, datetime
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
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dues_kernel.db.base import TrackedBase
from dues_kernel.db.types import round_money


class InstallmentEligibilityModel(TrackedBase):
    """Administrator decision on whether an obligation may be split."""

    __tablename__ = "installment_eligibility"

    obligation_id: Mapped[UUID] = mapped_column(
        ForeignKey("member_obligations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    is_eligible: Mapped[bool] = mapped_column(Boolean, default=False)
    allowed_sizes: Mapped[list] = mapped_column(JSON, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        from dues_modules.installments.models import InstallmentEligibility

        return InstallmentEligibility(
            obligation_id=self.obligation_id,
            is_eligible=self.is_eligible,
            allowed_sizes=tuple(sorted(int(s) for s in (self.allowed_sizes or []))),
            notes=self.notes,
        )


class SavedPaymentMethodModel(TrackedBase):
    """A processor payment method attached to a member's customer record."""

    __tablename__ = "saved_payment_methods"

    __table_args__ = (
        UniqueConstraint(
            "member_id", "processor_method_id",
            name="uq_saved_payment_methods_member_method",
        ),
    )

    member_id: Mapped[UUID] = mapped_column(ForeignKey("members.id"), nullable=False)
    processor_method_id: Mapped[str] = mapped_column(String(100), nullable=False)
    method_type: Mapped[str] = mapped_column(String(20), nullable=False)
    last4: Mapped[str | None] = mapped_column(String(4), nullable=True)
    brand: Mapped[str | None] = mapped_column(String(30), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)

    def to_dto(self):
        from dues_modules.installments.models import SavedPaymentMethod

        return SavedPaymentMethod(
            id=self.id,
            member_id=self.member_id,
            processor_method_id=self.processor_method_id,
            method_type=self.method_type,
            last4=self.last4,
            brand=self.brand,
            is_default=self.is_default,
        )


class InstallmentPlanModel(TrackedBase):
    """
    ORM model for a multi-payment plan over one obligation.

    Guarantees:
        - deadline_date and total_amount are copied at creation and never
          change.
        - sum(installments.amount) == total_amount.
    """

    __tablename__ = "installment_plans"

    __table_args__ = (
        Index(
            "uq_installment_plans_active_obligation",
            "obligation_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_installment_plans_member_id", "member_id"),
    )

    obligation_id: Mapped[UUID] = mapped_column(
        ForeignKey("member_obligations.id", ondelete="CASCADE"), nullable=False
    )
    member_id: Mapped[UUID] = mapped_column(ForeignKey("members.id"), nullable=False)
    num_installments: Mapped[int] = mapped_column(nullable=False)
    installments_paid: Mapped[int] = mapped_column(default=0)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    deadline_date: Mapped[date] = mapped_column(nullable=False)
    next_payment_date: Mapped[date | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active")
    payment_method_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("saved_payment_methods.id"), nullable=True
    )

    installments: Mapped[list["InstallmentPaymentModel"]] = relationship(
        back_populates="plan",
        order_by="InstallmentPaymentModel.installment_number",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dto(self):
        from dues_modules.installments.models import InstallmentPlan, PlanStatus

        return InstallmentPlan(
            id=self.id,
            obligation_id=self.obligation_id,
            member_id=self.member_id,
            num_installments=self.num_installments,
            installments_paid=self.installments_paid,
            total_amount=round_money(self.total_amount),
            deadline_date=self.deadline_date,
            next_payment_date=self.next_payment_date,
            status=PlanStatus(self.status),
            payment_method_id=self.payment_method_id,
            installments=tuple(i.to_dto() for i in self.installments),
        )

    def __repr__(self) -> str:
        return f"<InstallmentPlanModel {self.id} {self.status} {self.installments_paid}/{self.num_installments}>"


class InstallmentPaymentModel(TrackedBase):
    """One scheduled installment of a plan."""

    __tablename__ = "installment_payments"

    __table_args__ = (
        UniqueConstraint(
            "plan_id", "installment_number",
            name="uq_installment_payments_plan_number",
        ),
        Index("idx_installment_payments_status_date", "status", "scheduled_date"),
    )

    plan_id: Mapped[UUID] = mapped_column(
        ForeignKey("installment_plans.id", ondelete="CASCADE"), nullable=False
    )
    installment_number: Mapped[int] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    scheduled_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="scheduled")
    processor_payment_intent_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    plan: Mapped["InstallmentPlanModel"] = relationship(back_populates="installments")

    def to_dto(self):
        from dues_modules.installments.models import InstallmentPayment, InstallmentStatus

        return InstallmentPayment(
            id=self.id,
            plan_id=self.plan_id,
            installment_number=self.installment_number,
            amount=round_money(self.amount),
            scheduled_date=self.scheduled_date,
            status=InstallmentStatus(self.status),
            processor_payment_intent_id=self.processor_payment_intent_id,
            paid_at=self.paid_at,
            failure_reason=self.failure_reason,
        )


class PaymentIntentRecordModel(TrackedBase):
    """
    The stored processor charge attempt.

    Settlement callbacks are matched to this row by processor intent id; the
    idempotency key is the one sent with the charge.
    """

    __tablename__ = "payment_intent_records"

    __table_args__ = (
        Index("idx_payment_intent_records_obligation_id", "obligation_id"),
    )

    processor_intent_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    obligation_id: Mapped[UUID] = mapped_column(
        ForeignKey("member_obligations.id", ondelete="CASCADE"), nullable=False
    )
    plan_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("installment_plans.id", ondelete="CASCADE"), nullable=True
    )
    installment_payment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("installment_payments.id", ondelete="CASCADE"), nullable=True
    )
    base_amount: Mapped[Decimal] = mapped_column(nullable=False)
    processor_fee: Mapped[Decimal] = mapped_column(nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(nullable=False)
    total_charge: Mapped[Decimal] = mapped_column(nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(nullable=False)
    method_type: Mapped[str] = mapped_column(String(20), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")

    def __repr__(self) -> str:
        return f"<PaymentIntentRecordModel {self.processor_intent_id} {self.status}>"
