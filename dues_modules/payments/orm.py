"""
Payment ORM Models (``dues_modules.payments.orm``).

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``dues_kernel.db.base``.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dues_kernel.db.base import TrackedBase
from dues_kernel.db.types import round_money


class PaymentModel(TrackedBase):
    """
    ORM model for one payment applied to an obligation.

    Guarantees:
        - amount > 0 (enforced by PaymentRecorder).
        - reconciled flips once the payment is matched to a bank statement line.
    """

    __tablename__ = "dues_payments"

    __table_args__ = (
        Index("idx_dues_payments_obligation_id", "obligation_id"),
        Index("idx_dues_payments_reconciled", "reconciled"),
    )

    obligation_id: Mapped[UUID] = mapped_column(
        ForeignKey("member_obligations.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    payment_date: Mapped[date] = mapped_column(nullable=False)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reconciled: Mapped[bool] = mapped_column(Boolean, default=False)
    installment_payment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("installment_payments.id"), nullable=True
    )

    def to_dto(self):
        from dues_modules.payments.models import PaymentMethod, PaymentRecord

        return PaymentRecord(
            id=self.id,
            obligation_id=self.obligation_id,
            amount=round_money(self.amount),
            method=PaymentMethod(self.method),
            payment_date=self.payment_date,
            reference=self.reference,
            notes=self.notes,
            reconciled=self.reconciled,
            installment_payment_id=self.installment_payment_id,
        )

    def __repr__(self) -> str:
        return f"<PaymentModel {self.amount} {self.method} -> {self.obligation_id}>"
