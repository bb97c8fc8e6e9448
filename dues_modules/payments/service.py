"""
Payment Recorder - applies a payment to exactly one obligation.

Thin glue layer that:
1. Locks the obligation row (per-obligation serialization; payments against
   different obligations share no locks)
2. Rejects payments that would exceed the balance
3. Increments amount_paid and runs the balance/status state machine
4. Writes the auditable payment row

Used directly for manual entries and, with ``auto_commit=False``, by the
installment orchestrator for processor-confirmed installments.

Usage:
    recorder = PaymentRecorder(session, clock=clock)
    applied = recorder.record_payment(
        obligation_id, Decimal("100.00"), PaymentMethod.CHECK,
        reference="check #1042",
    )
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dues_kernel.db.base import SYSTEM_ACTOR_ID
from dues_kernel.db.types import round_money
from dues_kernel.domain.clock import Clock, SystemClock
from dues_kernel.exceptions import (
    InvalidAmountError,
    ObligationWaivedError,
    OverpaymentError,
    PaymentNotFoundError,
    ZeroBalanceError,
)
from dues_kernel.logging_config import LogContext, get_logger
from dues_modules._obligation_helpers import apply_state, is_waived, lock_obligation
from dues_modules._transaction import transaction_boundary
from dues_modules.payments.models import PaymentApplication, PaymentMethod, PaymentRecord
from dues_modules.payments.orm import PaymentModel

logger = get_logger("modules.payments.service")


class PaymentRecorder:
    """
    Applies payments to obligations.

    Transaction boundary: commits on success, rolls back on failure; with
    ``auto_commit=False`` it only flushes inside the caller's transaction.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or SYSTEM_ACTOR_ID
        self._auto_commit = auto_commit

    def record_payment(
        self,
        obligation_id: UUID,
        amount: Decimal,
        method: PaymentMethod | str,
        payment_date: date | None = None,
        reference: str | None = None,
        notes: str | None = None,
        installment_payment_id: UUID | None = None,
    ) -> PaymentApplication:
        """
        Apply ``amount`` to the obligation.

        Raises:
            InvalidAmountError: amount not positive.
            ObligationNotFoundError
            ObligationWaivedError, ZeroBalanceError: nothing is owed.
            OverpaymentError: amount exceeds the current balance.
        """
        amount = round_money(Decimal(amount))
        if amount <= 0:
            raise InvalidAmountError("amount", amount)
        method = PaymentMethod(method)
        payment_date = payment_date or self._clock.today()

        with LogContext.bind(obligation_id=obligation_id, actor_id=self._actor_id):
            logger.info("payment_record_started", extra={
                "amount": amount,
                "method": method.value,
            })

            with transaction_boundary(
                self._session, self._auto_commit, "record_payment", entity_id=obligation_id,
            ):
                obligation = lock_obligation(self._session, obligation_id)
                if is_waived(obligation):
                    raise ObligationWaivedError(obligation_id)
                balance = round_money(obligation.balance)
                if balance <= 0:
                    raise ZeroBalanceError(obligation_id)
                if amount > balance:
                    raise OverpaymentError(obligation_id, amount, balance)

                obligation.amount_paid = round_money(obligation.amount_paid) + amount
                obligation.updated_by_id = self._actor_id
                state = apply_state(obligation, self._clock.today())

                payment = PaymentModel(
                    obligation_id=obligation_id,
                    amount=amount,
                    method=method.value,
                    payment_date=payment_date,
                    reference=reference,
                    notes=notes,
                    reconciled=False,
                    installment_payment_id=installment_payment_id,
                    created_by_id=self._actor_id,
                )
                self._session.add(payment)
                self._session.flush()

            logger.info("payment_recorded", extra={
                "payment_id": str(payment.id),
                "amount": amount,
                "balance": state.balance,
                "status": state.status.value,
            })

        return PaymentApplication(
            payment=payment.to_dto(),
            amount_paid=round_money(obligation.amount_paid),
            balance=state.balance,
            status=state.status.value,
        )

    def mark_reconciled(self, payment_id: UUID, reconciled: bool = True) -> PaymentRecord:
        """Flag a payment as matched (or unmatched) to a bank statement line."""
        with transaction_boundary(
            self._session, self._auto_commit, "mark_reconciled", entity_type="payment", entity_id=payment_id,
        ):
            payment = self._session.get(PaymentModel, payment_id)
            if payment is None:
                raise PaymentNotFoundError(payment_id)
            payment.reconciled = reconciled
            payment.updated_by_id = self._actor_id
        logger.info("payment_reconciled_flag_set", extra={
            "payment_id": str(payment_id), "reconciled": reconciled,
        })
        return payment.to_dto()

    def list_payments(self, obligation_id: UUID) -> tuple[PaymentRecord, ...]:
        rows = self._session.execute(
            select(PaymentModel)
            .where(PaymentModel.obligation_id == obligation_id)
            .order_by(PaymentModel.payment_date, PaymentModel.created_at)
        ).scalars()
        return tuple(r.to_dto() for r in rows)
