"""
Installment Module Service - plan creation against the payment processor,
settlement callbacks and plan servicing.

Thin glue layer that:
1. Runs the plan preconditions in a fixed order, each with a distinct error
2. Resolves and verifies the member's payment method with the processor
3. Builds the schedule via ``dues_engines.schedule`` and prices each charge
   via ``dues_engines.fees``
4. Charges the first installment with a deterministic idempotency key
5. Settles confirmed installments through ``PaymentRecorder``

Transaction shape:
    The plan, its schedule, the stored processor attempt and the first
    settlement commit together.  A processor transport failure or a decline
    rolls the whole plan back; nothing is persisted.  Re-invoking
    ``create_plan`` after a transport failure derives the same idempotency
    key, so a charge that did reach the processor is replayed, never
    duplicated.

Usage:
    service = InstallmentService(session, processor, clock=clock)
    service.set_eligibility(obligation_id, is_eligible=True, allowed_sizes=(2, 3, 4))
    result = service.create_plan(member_id, obligation_id, 3, "pm_123")
    result.first_payment_status  # InstallmentStatus.PAID
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dues_config import get_settings
from dues_config.schema import DuesSettings
from dues_engines.fees import FeeBreakdown, PaymentMethodClass, calculate_fees
from dues_engines.schedule import build_schedule, resolve_deadline
from dues_kernel.db.base import SYSTEM_ACTOR_ID
from dues_kernel.db.types import round_money, to_minor_units
from dues_kernel.domain.clock import Clock, SystemClock
from dues_kernel.exceptions import (
    ActivePlanExistsError,
    ChargeDeclinedError,
    DeadlinePassedError,
    DuesEngineError,
    EligibilityNotFoundError,
    IneligibleForInstallmentsError,
    InvalidInstallmentCountError,
    MemberNotFoundError,
    NoDeadlineError,
    NotObligationOwnerError,
    ObligationNotFoundError,
    ObligationWaivedError,
    OverpaymentError,
    PaymentMethodOwnershipError,
    PaymentMethodRequiredError,
    PayoutAccountNotReadyError,
    PlanNotActiveError,
    PlanNotFoundError,
    PlanSizeNotAllowedError,
    ProcessorUnavailableError,
    ReconciliationError,
    SettlementMismatchError,
    UnknownPaymentIntentError,
    ZeroBalanceError,
)
from dues_kernel.logging_config import LogContext, get_logger
from dues_kernel.utils.idempotency import fingerprint, generate_idempotency_key
from dues_modules._obligation_helpers import is_waived, lock_obligation
from dues_modules._transaction import transaction_boundary
from dues_modules.dues.orm import (
    DuesConfigurationModel,
    MemberModel,
    MemberObligationModel,
    OrganizationModel,
)
from dues_modules.installments.models import (
    ChargeFailure,
    ChargeRunResult,
    InstallmentEligibility,
    InstallmentPlan,
    InstallmentStatus,
    IntentStatus,
    PlanCreationResult,
    PlanStatus,
    SavedPaymentMethod,
)
from dues_modules.installments.orm import (
    InstallmentEligibilityModel,
    InstallmentPaymentModel,
    InstallmentPlanModel,
    PaymentIntentRecordModel,
    SavedPaymentMethodModel,
)
from dues_modules.payments.models import PaymentMethod
from dues_modules.payments.service import PaymentRecorder
from dues_services.processor import (
    PROCESSING,
    REQUIRES_ACTION,
    SUCCEEDED,
    PaymentIntent,
    PaymentIntentRequest,
    PaymentProcessor,
    describe_intent,
)

logger = get_logger("modules.installments.service")

_SETTLEMENT_FAILURES = (OverpaymentError, ZeroBalanceError, ObligationWaivedError)


class InstallmentService:
    """
    Installment plans over member obligations.

    Transaction boundary: every public mutator commits on success and rolls
    back on failure.  ``charge_due_installments`` uses a SAVEPOINT per
    installment so one failure never aborts the run.
    """

    def __init__(
        self,
        session: Session,
        processor: PaymentProcessor,
        clock: Clock | None = None,
        settings: DuesSettings | None = None,
        actor_id: UUID | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._processor = processor
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()
        self._actor_id = actor_id or SYSTEM_ACTOR_ID
        self._auto_commit = auto_commit

    # =========================================================================
    # Eligibility
    # =========================================================================

    def set_eligibility(
        self,
        obligation_id: UUID,
        is_eligible: bool,
        allowed_sizes: Iterable[int] | None = None,
        notes: str | None = None,
    ) -> InstallmentEligibility:
        """
        Create or replace the obligation's eligibility decision.

        Raises:
            ObligationNotFoundError
            InvalidInstallmentCountError: a size outside the configured range.
        """
        policy = self._settings.installments
        sizes = tuple(sorted(set(allowed_sizes or policy.default_allowed_sizes)))
        for size in sizes:
            if not policy.accepts(size):
                raise InvalidInstallmentCountError(size, policy.min_installments, policy.max_installments)

        with transaction_boundary(
            self._session, self._auto_commit, "set_eligibility", entity_id=obligation_id,
        ):
            if self._session.get(MemberObligationModel, obligation_id) is None:
                raise ObligationNotFoundError(obligation_id)
            row = self._eligibility_row(obligation_id)
            if row is None:
                row = InstallmentEligibilityModel(
                    obligation_id=obligation_id,
                    created_by_id=self._actor_id,
                )
                self._session.add(row)
            else:
                row.updated_by_id = self._actor_id
            row.is_eligible = is_eligible
            row.allowed_sizes = list(sizes)
            row.notes = notes

        logger.info("installment_eligibility_set", extra={
            "obligation_id": str(obligation_id),
            "is_eligible": is_eligible,
            "allowed_sizes": list(sizes),
        })
        return row.to_dto()

    def get_eligibility(self, obligation_id: UUID) -> InstallmentEligibility | None:
        row = self._eligibility_row(obligation_id)
        return row.to_dto() if row is not None else None

    # =========================================================================
    # Payment methods
    # =========================================================================

    def attach_payment_method(
        self,
        member_id: UUID,
        processor_method_id: str,
        is_default: bool = False,
    ) -> SavedPaymentMethod:
        """
        Verify a processor payment method belongs to the member and save it.

        Raises:
            MemberNotFoundError
            PaymentMethodOwnershipError: the processor reports another owner.
            ProcessorUnavailableError
        """
        with transaction_boundary(
            self._session, self._auto_commit, "attach_payment_method",
            entity_type="member", entity_id=member_id,
        ):
            member = self._session.get(MemberModel, member_id)
            if member is None:
                raise MemberNotFoundError(member_id)
            saved = self._verify_and_save_method(member, processor_method_id)
            if is_default:
                for other in self._session.execute(
                    select(SavedPaymentMethodModel).where(
                        SavedPaymentMethodModel.member_id == member_id,
                    )
                ).scalars():
                    other.is_default = other.id == saved.id
        return saved.to_dto()

    # =========================================================================
    # Plan creation
    # =========================================================================

    def create_plan(
        self,
        member_id: UUID,
        obligation_id: UUID,
        num_installments: int,
        payment_method_ref: str | None,
        skip_first_payment: bool = False,
    ) -> PlanCreationResult:
        """
        Split the obligation's balance into a plan and take the first payment.

        With ``skip_first_payment`` the first installment was collected
        outside the engine: it is recorded as paid without a charge.

        Raises:
            InvalidInstallmentCountError, PaymentMethodRequiredError,
            PaymentMethodOwnershipError: invalid input.
            ObligationNotFoundError, EligibilityNotFoundError
            NotObligationOwnerError, ZeroBalanceError,
            IneligibleForInstallmentsError, PlanSizeNotAllowedError,
            NoDeadlineError, DeadlinePassedError, PayoutAccountNotReadyError
            ActivePlanExistsError
            ProcessorUnavailableError: transport failure; safe to retry.
            ChargeDeclinedError: the first charge was declined.
            IdempotencyKeyReusedError: the processor refused the charge key.
        """
        policy = self._settings.installments
        if not isinstance(num_installments, int) or not policy.accepts(num_installments):
            raise InvalidInstallmentCountError(
                num_installments, policy.min_installments, policy.max_installments,
            )
        if not payment_method_ref:
            raise PaymentMethodRequiredError(member_id)

        as_of = self._clock.today()

        with LogContext.bind(obligation_id=obligation_id, actor_id=self._actor_id):
            logger.info("installment_plan_create_started", extra={
                "member_id": str(member_id),
                "num_installments": num_installments,
                "skip_first_payment": skip_first_payment,
            })

            with transaction_boundary(
                self._session, self._auto_commit, "create_plan", entity_id=obligation_id,
            ):
                obligation = self._check_plan_preconditions(
                    member_id, obligation_id, num_installments, as_of,
                )
                config = self._session.get(DuesConfigurationModel, obligation.configuration_id)
                deadline = self._resolve_plan_deadline(obligation, config, as_of)

                member = self._session.get(MemberModel, member_id)
                if skip_first_payment:
                    method = self._verify_and_save_method(member, payment_method_ref)
                else:
                    method = self._saved_method(member_id, payment_method_ref)
                    if method is None:
                        raise PaymentMethodRequiredError(member_id, payment_method_ref)

                organization = self._session.get(OrganizationModel, config.organization_id)
                if not organization.payout_account_id or not organization.charges_enabled:
                    raise PayoutAccountNotReadyError(organization.id)

                plan = self._build_plan(obligation, member_id, method, num_installments, as_of, deadline)
                first = plan.installments[0]

                with LogContext.bind(plan_id=plan.id):
                    if skip_first_payment:
                        self._settle(plan, first)
                        result = PlanCreationResult(
                            plan=plan.to_dto(),
                            first_payment_status=InstallmentStatus.PAID,
                        )
                    else:
                        key = self._first_charge_key(obligation, method, first.amount, num_installments)
                        intent = self._charge(plan, first, obligation, member, method, organization, key)
                        status = self._apply_charge_outcome(plan, first, intent)
                        if status is InstallmentStatus.FAILED:
                            logger.warning("installment_first_charge_declined", extra=describe_intent(intent))
                            raise ChargeDeclinedError(intent.status, intent.id)
                        result = PlanCreationResult(
                            plan=plan.to_dto(),
                            first_payment_status=status,
                            payment_intent_id=intent.id,
                            client_secret=intent.client_secret,
                            requires_action=intent.status == REQUIRES_ACTION,
                        )

            logger.info("installment_plan_created", extra={
                "plan_id": str(plan.id),
                "num_installments": num_installments,
                "total_amount": result.plan.total_amount,
                "deadline": deadline,
                "first_payment_status": result.first_payment_status.value,
            })
        return result

    # =========================================================================
    # Settlement and servicing
    # =========================================================================

    def reconcile_payment_intent(
        self,
        processor_intent_id: str,
        status: str,
        amount_minor: int | None = None,
    ) -> InstallmentStatus:
        """
        Apply a processor settlement callback to the stored attempt.

        An open attempt (pending / processing / requires_action) moves to the
        reported status; ``succeeded`` settles the installment through the
        payment recorder, anything the engine does not recognise as open or
        succeeded marks it failed.

        Raises:
            UnknownPaymentIntentError: no stored attempt for the id.
            SettlementMismatchError: the report contradicts the stored
                attempt (already settled or failed, amount differs, or the
                obligation can no longer take the payment).
        """
        try:
            with transaction_boundary(
                self._session, self._auto_commit, "reconcile_payment_intent",
                entity_type="payment_intent", entity_id=processor_intent_id,
            ):
                record = self._session.execute(
                    select(PaymentIntentRecordModel)
                    .where(PaymentIntentRecordModel.processor_intent_id == processor_intent_id)
                    .with_for_update()
                ).scalar_one_or_none()
                if record is None:
                    raise UnknownPaymentIntentError(processor_intent_id)

                stored = IntentStatus(record.status)
                if not stored.is_open:
                    raise SettlementMismatchError(
                        processor_intent_id, stored.value, status, f"attempt already {stored.value}",
                    )
                if amount_minor is not None and amount_minor != to_minor_units(round_money(record.total_charge)):
                    raise SettlementMismatchError(
                        processor_intent_id, stored.value, status,
                        f"amount {amount_minor} does not match stored charge "
                        f"{to_minor_units(round_money(record.total_charge))}",
                    )

                installment = self._session.get(InstallmentPaymentModel, record.installment_payment_id)
                plan = installment.plan
                with LogContext.bind(obligation_id=record.obligation_id, plan_id=plan.id):
                    outcome = self._apply_report(record, plan, installment, status)
        except ReconciliationError as exc:
            logger.error("payment_intent_reconciliation_failed", extra={
                "payment_intent_id": processor_intent_id,
                "reported_status": status,
                "error_code": exc.code,
                "detail": str(exc),
            })
            raise

        logger.info("payment_intent_reconciled", extra={
            "payment_intent_id": processor_intent_id,
            "reported_status": status,
            "installment_status": outcome.value,
        })
        return outcome

    def charge_due_installments(self, as_of: date | None = None) -> ChargeRunResult:
        """
        Charge every scheduled installment of an active plan due on or before
        ``as_of``.

        Each installment runs in its own SAVEPOINT; failures (declines,
        transport errors, obligations that can no longer take the amount) are
        itemized in the result and never abort the run.
        """
        as_of = as_of or self._clock.today()
        due = self._session.execute(
            select(InstallmentPaymentModel.id, InstallmentPaymentModel.plan_id)
            .join(InstallmentPlanModel, InstallmentPlanModel.id == InstallmentPaymentModel.plan_id)
            .where(
                InstallmentPlanModel.status == PlanStatus.ACTIVE.value,
                InstallmentPaymentModel.status == InstallmentStatus.SCHEDULED.value,
                InstallmentPaymentModel.scheduled_date <= as_of,
            )
            .order_by(InstallmentPaymentModel.scheduled_date, InstallmentPaymentModel.installment_number)
        ).all()

        logger.info("installment_charge_run_started", extra={
            "as_of": as_of,
            "due": len(due),
        })

        charged = 0
        pending = 0
        failures: list[ChargeFailure] = []

        with transaction_boundary(self._session, self._auto_commit, "charge_due_installments"):
            for installment_id, plan_id in due:
                try:
                    with self._session.begin_nested():
                        status, intent = self._charge_scheduled(installment_id)
                except DuesEngineError as exc:
                    failures.append(ChargeFailure(installment_id, plan_id, exc.code, str(exc)))
                    logger.warning("installment_charge_failed", extra={
                        "installment_payment_id": str(installment_id),
                        "plan_id": str(plan_id),
                        "error_code": exc.code,
                    })
                    continue

                if status is InstallmentStatus.PAID:
                    charged += 1
                elif status is InstallmentStatus.PROCESSING:
                    pending += 1
                else:
                    failures.append(ChargeFailure(
                        installment_id, plan_id, ChargeDeclinedError.code,
                        f"Payment failed with status: {intent.status}",
                    ))

        logger.info("installment_charge_run_completed", extra={
            "as_of": as_of,
            "charged": charged,
            "pending": pending,
            "failed": len(failures),
        })
        return ChargeRunResult(as_of=as_of, charged=charged, pending=pending, failures=tuple(failures))

    def cancel_plan(self, plan_id: UUID, reason: str | None = None) -> InstallmentPlan:
        """
        Stop an active plan.  Charges already submitted are not cancelled;
        their callbacks still settle against the obligation.

        Raises:
            PlanNotFoundError
            PlanNotActiveError
        """
        with transaction_boundary(
            self._session, self._auto_commit, "cancel_plan", entity_type="installment_plan", entity_id=plan_id,
        ):
            plan = self._session.get(InstallmentPlanModel, plan_id, with_for_update=True)
            if plan is None:
                raise PlanNotFoundError(plan_id)
            if plan.status != PlanStatus.ACTIVE.value:
                raise PlanNotActiveError(plan_id, plan.status)
            plan.status = PlanStatus.CANCELLED.value
            plan.next_payment_date = None
            plan.updated_by_id = self._actor_id

        logger.info("installment_plan_cancelled", extra={
            "plan_id": str(plan_id),
            "reason": reason,
            "installments_paid": plan.installments_paid,
        })
        return plan.to_dto()

    def get_plan(self, plan_id: UUID) -> InstallmentPlan:
        plan = self._session.get(InstallmentPlanModel, plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan.to_dto()

    def get_active_plan(self, obligation_id: UUID) -> InstallmentPlan | None:
        plan = self._active_plan(obligation_id)
        return plan.to_dto() if plan is not None else None

    # =========================================================================
    # Internals: preconditions
    # =========================================================================

    def _check_plan_preconditions(
        self,
        member_id: UUID,
        obligation_id: UUID,
        num_installments: int,
        as_of: date,
    ) -> MemberObligationModel:
        # Order matters: each failure has its own error.
        obligation = lock_obligation(self._session, obligation_id)
        if obligation.member_id != member_id:
            raise NotObligationOwnerError(obligation_id, member_id)

        if is_waived(obligation) or round_money(obligation.balance) <= 0:
            raise ZeroBalanceError(obligation_id)

        eligibility = self._eligibility_row(obligation_id)
        if eligibility is None:
            raise EligibilityNotFoundError(obligation_id)
        if not eligibility.is_eligible:
            raise IneligibleForInstallmentsError(obligation_id)
        allowed = eligibility.to_dto().allowed_sizes
        if num_installments not in allowed:
            raise PlanSizeNotAllowedError(obligation_id, num_installments, allowed)

        active = self._active_plan(obligation_id)
        if active is not None:
            raise ActivePlanExistsError(obligation_id, active.id)
        return obligation

    def _resolve_plan_deadline(
        self,
        obligation: MemberObligationModel,
        config: DuesConfigurationModel,
        as_of: date,
    ) -> date:
        deadline = resolve_deadline(
            obligation.flexible_plan_deadline, obligation.due_date, config.due_date,
        )
        if deadline is None:
            raise NoDeadlineError(obligation.id)
        if deadline <= as_of:
            raise DeadlinePassedError(obligation.id, deadline, as_of)
        return deadline

    def _eligibility_row(self, obligation_id: UUID) -> InstallmentEligibilityModel | None:
        return self._session.execute(
            select(InstallmentEligibilityModel).where(
                InstallmentEligibilityModel.obligation_id == obligation_id
            )
        ).scalar_one_or_none()

    def _active_plan(self, obligation_id: UUID) -> InstallmentPlanModel | None:
        return self._session.execute(
            select(InstallmentPlanModel).where(
                InstallmentPlanModel.obligation_id == obligation_id,
                InstallmentPlanModel.status == PlanStatus.ACTIVE.value,
            )
        ).scalar_one_or_none()

    # =========================================================================
    # Internals: payment methods
    # =========================================================================

    def _ensure_customer(self, member: MemberModel) -> str:
        customer_id = self._processor.get_or_create_customer(
            member.email, member.full_name, member.processor_customer_id,
        )
        if member.processor_customer_id != customer_id:
            member.processor_customer_id = customer_id
            member.updated_by_id = self._actor_id
        return customer_id

    def _verify_and_save_method(
        self,
        member: MemberModel,
        processor_method_id: str,
    ) -> SavedPaymentMethodModel:
        customer_id = self._ensure_customer(member)
        method = self._processor.retrieve_payment_method(processor_method_id)
        if method is None or method.customer_id != customer_id:
            raise PaymentMethodOwnershipError(processor_method_id, customer_id)

        saved = self._saved_method(member.id, processor_method_id)
        if saved is None:
            saved = SavedPaymentMethodModel(
                member_id=member.id,
                processor_method_id=processor_method_id,
                method_type=PaymentMethodClass.parse(method.method_type).value,
                last4=method.last4,
                brand=method.brand,
                is_default=False,
                created_by_id=self._actor_id,
            )
            self._session.add(saved)
            self._session.flush()
            logger.info("payment_method_saved", extra={
                "member_id": str(member.id),
                "method_type": saved.method_type,
            })
        return saved

    def _saved_method(self, member_id: UUID, processor_method_id: str) -> SavedPaymentMethodModel | None:
        return self._session.execute(
            select(SavedPaymentMethodModel).where(
                SavedPaymentMethodModel.member_id == member_id,
                SavedPaymentMethodModel.processor_method_id == processor_method_id,
            )
        ).scalar_one_or_none()

    # =========================================================================
    # Internals: plan, charges, settlement
    # =========================================================================

    def _build_plan(
        self,
        obligation: MemberObligationModel,
        member_id: UUID,
        method: SavedPaymentMethodModel,
        num_installments: int,
        as_of: date,
        deadline: date,
    ) -> InstallmentPlanModel:
        balance = round_money(obligation.balance)
        schedule = build_schedule(
            balance=balance,
            num_installments=num_installments,
            start_date=as_of,
            deadline=deadline,
        )
        plan = InstallmentPlanModel(
            obligation_id=obligation.id,
            member_id=member_id,
            num_installments=num_installments,
            installments_paid=0,
            total_amount=balance,
            deadline_date=deadline,
            next_payment_date=as_of,
            status=PlanStatus.ACTIVE.value,
            payment_method_id=method.id,
            created_by_id=self._actor_id,
        )
        for item in schedule:
            plan.installments.append(InstallmentPaymentModel(
                installment_number=item.installment_number,
                amount=item.amount,
                scheduled_date=item.scheduled_date,
                status=InstallmentStatus.SCHEDULED.value,
                created_by_id=self._actor_id,
            ))
        self._session.add(plan)
        self._session.flush()
        return plan

    def _first_charge_key(
        self,
        obligation: MemberObligationModel,
        method: SavedPaymentMethodModel,
        first_amount: Decimal,
        num_installments: int,
    ) -> str:
        # A retry of the same request replays the processor charge.  A new
        # plan after a cancellation, or a retry with another payment method
        # after a decline, is a new charge.
        earlier_plans = self._session.execute(
            select(func.count()).select_from(InstallmentPlanModel).where(
                InstallmentPlanModel.obligation_id == obligation.id,
                InstallmentPlanModel.status != PlanStatus.ACTIVE.value,
            )
        ).scalar_one()
        digest = fingerprint(
            obligation.id,
            round_money(obligation.amount_paid),
            round_money(first_amount),
            num_installments,
            earlier_plans,
            method.processor_method_id,
            method.method_type,
        )
        return generate_idempotency_key("installments", "first_charge", digest)

    def _charge(
        self,
        plan: InstallmentPlanModel,
        installment: InstallmentPaymentModel,
        obligation: MemberObligationModel,
        member: MemberModel,
        method: SavedPaymentMethodModel,
        organization: OrganizationModel,
        idempotency_key: str,
    ) -> PaymentIntent:
        fees = calculate_fees(
            amount=round_money(installment.amount),
            method_class=PaymentMethodClass.parse(method.method_type),
            schedule=self._settings.fees,
        )
        customer_id = member.processor_customer_id or self._ensure_customer(member)
        request = PaymentIntentRequest(
            amount_minor=to_minor_units(fees.total_charge),
            currency=self._settings.currency.lower(),
            customer_id=customer_id,
            payment_method_id=method.processor_method_id,
            idempotency_key=idempotency_key,
            transfer_destination=organization.payout_account_id,
            transfer_amount_minor=to_minor_units(fees.net_amount),
            metadata={
                "obligation_id": str(obligation.id),
                "member_id": str(member.id),
                "organization_id": str(organization.id),
                "plan_id": str(plan.id),
                "installment_payment_id": str(installment.id),
                "installment_number": str(installment.installment_number),
                "method_type": fees.method_class.value,
                "type": "installment",
            },
        )
        try:
            intent = self._processor.create_payment_intent(request)
        except ProcessorUnavailableError:
            logger.warning("installment_charge_transport_failure", extra={
                "installment_payment_id": str(installment.id),
                "idempotency_key": idempotency_key,
            })
            raise

        self._store_attempt(plan, installment, fees, intent, idempotency_key)
        installment.processor_payment_intent_id = intent.id
        return intent

    def _store_attempt(
        self,
        plan: InstallmentPlanModel,
        installment: InstallmentPaymentModel,
        fees: FeeBreakdown,
        intent: PaymentIntent,
        idempotency_key: str,
    ) -> PaymentIntentRecordModel:
        record = PaymentIntentRecordModel(
            processor_intent_id=intent.id,
            obligation_id=plan.obligation_id,
            plan_id=plan.id,
            installment_payment_id=installment.id,
            base_amount=fees.amount,
            processor_fee=fees.processor_fee,
            platform_fee=fees.platform_fee,
            total_charge=fees.total_charge,
            net_amount=fees.net_amount,
            method_type=fees.method_class.value,
            idempotency_key=idempotency_key,
            status=IntentStatus.PENDING.value,
            created_by_id=self._actor_id,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def _apply_charge_outcome(
        self,
        plan: InstallmentPlanModel,
        installment: InstallmentPaymentModel,
        intent: PaymentIntent,
    ) -> InstallmentStatus:
        record = self._session.execute(
            select(PaymentIntentRecordModel).where(
                PaymentIntentRecordModel.processor_intent_id == intent.id
            )
        ).scalar_one()

        if intent.status == SUCCEEDED:
            record.status = IntentStatus.SUCCEEDED.value
            self._settle(plan, installment)
            return InstallmentStatus.PAID
        if intent.status in (PROCESSING, REQUIRES_ACTION):
            record.status = IntentStatus(intent.status).value
            installment.status = InstallmentStatus.PROCESSING.value
            return InstallmentStatus.PROCESSING

        record.status = IntentStatus.FAILED.value
        self._fail(installment, f"Payment failed with status: {intent.status}")
        return InstallmentStatus.FAILED

    def _apply_report(
        self,
        record: PaymentIntentRecordModel,
        plan: InstallmentPlanModel,
        installment: InstallmentPaymentModel,
        status: str,
    ) -> InstallmentStatus:
        if status == SUCCEEDED:
            try:
                self._settle(plan, installment)
            except _SETTLEMENT_FAILURES as exc:
                raise SettlementMismatchError(
                    record.processor_intent_id, record.status, status, str(exc),
                ) from exc
            record.status = IntentStatus.SUCCEEDED.value
            return InstallmentStatus.PAID
        if status in (PROCESSING, REQUIRES_ACTION):
            record.status = status
            installment.status = InstallmentStatus.PROCESSING.value
            return InstallmentStatus.PROCESSING

        record.status = IntentStatus.FAILED.value
        self._fail(installment, f"Payment failed with status: {status}")
        return InstallmentStatus.FAILED

    def _charge_scheduled(self, installment_id: UUID) -> tuple[InstallmentStatus, PaymentIntent]:
        installment = self._session.get(
            InstallmentPaymentModel, installment_id, with_for_update=True, populate_existing=True,
        )
        plan = installment.plan
        obligation = lock_obligation(self._session, plan.obligation_id)
        if is_waived(obligation):
            raise ObligationWaivedError(obligation.id)
        balance = round_money(obligation.balance)
        if balance <= 0:
            raise ZeroBalanceError(obligation.id)
        if round_money(installment.amount) > balance:
            raise OverpaymentError(obligation.id, round_money(installment.amount), balance)

        method = self._session.get(SavedPaymentMethodModel, plan.payment_method_id)
        if method is None:
            raise PaymentMethodRequiredError(plan.member_id)
        member = self._session.get(MemberModel, plan.member_id)
        config = self._session.get(DuesConfigurationModel, obligation.configuration_id)
        organization = self._session.get(OrganizationModel, config.organization_id)
        if not organization.payout_account_id or not organization.charges_enabled:
            raise PayoutAccountNotReadyError(organization.id)

        key = generate_idempotency_key("installments", "scheduled_charge", installment.id)
        with LogContext.bind(obligation_id=obligation.id, plan_id=plan.id):
            intent = self._charge(plan, installment, obligation, member, method, organization, key)
            return self._apply_charge_outcome(plan, installment, intent), intent

    def _settle(self, plan: InstallmentPlanModel, installment: InstallmentPaymentModel) -> None:
        recorder = PaymentRecorder(
            self._session, clock=self._clock, actor_id=self._actor_id, auto_commit=False,
        )
        applied = recorder.record_payment(
            plan.obligation_id,
            round_money(installment.amount),
            PaymentMethod.INSTALLMENT,
            reference=installment.processor_payment_intent_id,
            notes=f"Installment {installment.installment_number} of {plan.num_installments}",
            installment_payment_id=installment.id,
        )
        installment.status = InstallmentStatus.PAID.value
        installment.paid_at = self._clock.now()
        installment.failure_reason = None
        plan.installments_paid += 1
        plan.updated_by_id = self._actor_id

        if plan.status == PlanStatus.ACTIVE.value:
            if plan.installments_paid >= plan.num_installments or applied.balance <= 0:
                plan.status = PlanStatus.COMPLETED.value
                plan.next_payment_date = None
                logger.info("installment_plan_completed", extra={"plan_id": str(plan.id)})
            else:
                plan.next_payment_date = self._next_payment_date(plan)

        logger.info("installment_settled", extra={
            "installment_payment_id": str(installment.id),
            "installment_number": installment.installment_number,
            "amount": round_money(installment.amount),
            "balance": applied.balance,
        })

    def _fail(self, installment: InstallmentPaymentModel, reason: str) -> None:
        installment.status = InstallmentStatus.FAILED.value
        installment.failure_reason = reason
        installment.updated_by_id = self._actor_id
        logger.warning("installment_charge_declined", extra={
            "installment_payment_id": str(installment.id),
            "reason": reason,
        })

    @staticmethod
    def _next_payment_date(plan: InstallmentPlanModel) -> date | None:
        upcoming = [
            i.scheduled_date for i in plan.installments
            if i.status == InstallmentStatus.SCHEDULED.value
        ]
        return min(upcoming) if upcoming else None
