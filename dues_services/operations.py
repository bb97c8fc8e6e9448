"""
DuesOperations -- caller-facing facade over the module services.

Responsibility:
    One method per external operation.  Each call runs in its own
    ``session_scope()`` transaction and returns an ``OperationResult``
    instead of raising for domain failures, so a presentation layer can
    render ``error`` directly.

Architecture position:
    Services -- composes dues_modules services with the payment processor
    port, the clock and settings.  Nothing below this layer imports it.

Failure modes:
    - ``DuesEngineError`` -> ``OperationResult(success=False, error={kind,
      code, message, ...})`` after the transaction is rolled back.
    - Any other exception propagates after rollback.

Usage:
    ops = DuesOperations(processor=InMemoryPaymentProcessor())
    result = ops.record_payment(obligation_id, Decimal("50.00"), "check")
    if not result.success:
        result.error["code"]
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from dues_config import get_settings
from dues_config.schema import DuesSettings
from dues_kernel.db.base import SYSTEM_ACTOR_ID
from dues_kernel.db.engine import session_scope
from dues_kernel.domain.clock import Clock, SystemClock
from dues_kernel.exceptions import DuesEngineError
from dues_kernel.logging_config import LogContext, get_logger
from dues_modules.dues.models import AssignmentFilters
from dues_modules.dues.service import DuesService
from dues_modules.installments.service import InstallmentService
from dues_modules.late_fees.service import LateFeeService
from dues_modules.payments.models import PaymentMethod
from dues_modules.payments.service import PaymentRecorder
from dues_services.processor import PaymentProcessor

logger = get_logger("services.operations")

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one facade call."""

    success: bool
    data: Any = None
    error: dict[str, Any] | None = None

    @classmethod
    def ok(cls, data: Any = None) -> OperationResult:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, exc: DuesEngineError) -> OperationResult:
        return cls(success=False, error=exc.to_dict())


class DuesOperations:
    """
    Stateless facade; safe to share across requests.

    ``session_factory`` defaults to the kernel's global factory.
    """

    def __init__(
        self,
        processor: PaymentProcessor,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        settings: DuesSettings | None = None,
        actor_id: UUID | None = None,
    ):
        self._processor = processor
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings
        self._actor_id = actor_id or SYSTEM_ACTOR_ID

    # -- dues -----------------------------------------------------------------

    def assign_obligation(
        self,
        configuration_id: UUID,
        member_ref: UUID | str,
        amount: Decimal | None = None,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> OperationResult:
        return self._run("assign_obligation", lambda s: self._dues(s).assign_obligation(
            configuration_id, member_ref, amount=amount, due_date=due_date, notes=notes,
        ))

    def bulk_assign(
        self,
        configuration_id: UUID,
        filters: AssignmentFilters | None = None,
        amount: Decimal | None = None,
        due_date: date | None = None,
    ) -> OperationResult:
        # Bulk assignment commits its own batches.
        return self._run("bulk_assign", lambda s: DuesService(
            s, clock=self._clock, actor_id=self._actor_id, auto_commit=True,
        ).bulk_assign(configuration_id, filters, amount=amount, due_date=due_date))

    def export_obligations(self, configuration_id: UUID, as_of: date | None = None) -> OperationResult:
        return self._run("export_obligations", lambda s: self._dues(s).export_obligations(
            configuration_id, as_of,
        ))

    def configuration_stats(self, configuration_id: UUID, as_of: date | None = None) -> OperationResult:
        return self._run("configuration_stats", lambda s: self._dues(s).configuration_stats(
            configuration_id, as_of,
        ))

    # -- payments -------------------------------------------------------------

    def record_payment(
        self,
        obligation_id: UUID,
        amount: Decimal,
        method: PaymentMethod | str,
        payment_date: date | None = None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> OperationResult:
        return self._run("record_payment", lambda s: PaymentRecorder(
            s, clock=self._clock, actor_id=self._actor_id, auto_commit=False,
        ).record_payment(
            obligation_id, amount, method,
            payment_date=payment_date, reference=reference, notes=notes,
        ))

    # -- late fees ------------------------------------------------------------

    def sweep_late_fees(self, configuration_id: UUID, as_of: date | None = None) -> OperationResult:
        return self._run("sweep_late_fees", lambda s: LateFeeService(
            s, clock=self._clock, settings=self._resolved_settings(),
            actor_id=self._actor_id, auto_commit=False,
        ).sweep_late_fees(configuration_id, as_of))

    # -- installments ---------------------------------------------------------

    def create_installment_plan(
        self,
        member_id: UUID,
        obligation_id: UUID,
        num_installments: int,
        payment_method_ref: str | None,
        skip_first_payment: bool = False,
    ) -> OperationResult:
        return self._run("create_installment_plan", lambda s: self._installments(s).create_plan(
            member_id, obligation_id, num_installments, payment_method_ref,
            skip_first_payment=skip_first_payment,
        ))

    def reconcile_payment_intent(
        self,
        processor_intent_id: str,
        status: str,
        amount_minor: int | None = None,
    ) -> OperationResult:
        return self._run("reconcile_payment_intent", lambda s: self._installments(s).reconcile_payment_intent(
            processor_intent_id, status, amount_minor,
        ))

    def charge_due_installments(self, as_of: date | None = None) -> OperationResult:
        return self._run("charge_due_installments", lambda s: self._installments(s).charge_due_installments(as_of))

    # -- internals ------------------------------------------------------------

    def _resolved_settings(self) -> DuesSettings:
        return self._settings or get_settings()

    def _dues(self, session: Session) -> DuesService:
        return DuesService(session, clock=self._clock, actor_id=self._actor_id, auto_commit=False)

    def _installments(self, session: Session) -> InstallmentService:
        return InstallmentService(
            session,
            self._processor,
            clock=self._clock,
            settings=self._resolved_settings(),
            actor_id=self._actor_id,
            auto_commit=False,
        )

    def _run(self, operation: str, call: Callable[[Session], T]) -> OperationResult:
        with LogContext.bind(actor_id=self._actor_id):
            try:
                with session_scope(self._session_factory) as session:
                    data = call(session)
            except DuesEngineError as exc:
                logger.info("operation_failed", extra={
                    "operation": operation,
                    "error_code": exc.code,
                    "error_kind": exc.kind,
                })
                return OperationResult.failure(exc)
        return OperationResult.ok(data)
