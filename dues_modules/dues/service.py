"""
Dues Module Service - configuration, obligation assignment, administrative
edits and the obligation read model.

Thin glue layer that:
1. Resolves the charge for a member from the configuration (cohort override,
   else default) and creates one obligation per (member, configuration)
2. Routes every amount change through the balance/status state machine
3. Serves the flat export read model and configuration statistics

This service owns the transaction boundary: it commits on success and rolls
back on failure (``auto_commit=False`` makes it flush only, for composition).

Usage:
    service = DuesService(session, clock=clock)
    config = service.create_configuration(
        organization_id=org.id, period_name="Fall 2024", fiscal_year=2024,
        default_amount=Decimal("500.00"), due_date=date(2024, 10, 1),
        cohort_amounts={"Freshman": Decimal("550.00")},
    )
    obligation = service.assign_obligation(config.id, "jane@example.org")
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from dues_engines.late_fees import LateFeePolicy
from dues_engines.status import ObligationStatus, days_overdue, effective_status
from dues_kernel.db.base import SYSTEM_ACTOR_ID
from dues_kernel.db.types import ZERO, round_money
from dues_kernel.domain.clock import Clock, SystemClock
from dues_kernel.exceptions import (
    ActivePlanExistsError,
    AdjustmentReasonRequiredError,
    AlreadyAssignedError,
    ConfigurationNotFoundError,
    DuesEngineError,
    InvalidAmountError,
    MemberNotFoundError,
    NotFoundError,
    ObligationNotFoundError,
    ObligationWaivedError,
    PaymentsExistError,
)
from dues_kernel.logging_config import LogContext, get_logger
from dues_modules._obligation_helpers import (
    apply_state,
    apply_waive,
    is_waived,
    lock_obligation,
)
from dues_modules._transaction import transaction_boundary
from dues_modules.dues.models import (
    AssignmentFilters,
    BulkAssignmentError,
    BulkAssignmentResult,
    ConfigurationStats,
    DuesConfiguration,
    Member,
    MemberObligation,
    MemberStatus,
    ObligationSummary,
    Organization,
)
from dues_modules.dues.orm import (
    DuesConfigurationModel,
    MemberModel,
    MemberObligationModel,
    OrganizationModel,
)

logger = get_logger("modules.dues.service")


def _positive(field: str, amount: Decimal | None, allow_zero: bool = False) -> Decimal | None:
    if amount is None:
        return None
    amount = round_money(Decimal(amount))
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmountError(field, amount)
    return amount


class DuesService:
    """
    Dues configuration, assignment and administration.

    Transaction boundary: this service commits on success, rolls back on
    failure.  Bulk assignment commits every ``batch_size`` members and runs
    each member inside its own SAVEPOINT.
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

    # =========================================================================
    # Organizations and roster
    # =========================================================================

    def create_organization(
        self,
        name: str,
        payout_account_id: str | None = None,
        charges_enabled: bool = False,
    ) -> Organization:
        with transaction_boundary(self._session, self._auto_commit, "create_organization"):
            org = OrganizationModel(
                name=name,
                payout_account_id=payout_account_id,
                charges_enabled=charges_enabled,
                created_by_id=self._actor_id,
            )
            self._session.add(org)
            self._session.flush()
        logger.info("organization_created", extra={"organization_id": str(org.id)})
        return org.to_dto()

    def update_payout_account(
        self,
        organization_id: UUID,
        payout_account_id: str | None,
        charges_enabled: bool,
    ) -> Organization:
        """Record the processor connected account state for an organization."""
        with transaction_boundary(self._session, self._auto_commit, "update_payout_account"):
            org = self._session.get(OrganizationModel, organization_id)
            if org is None:
                raise NotFoundError(f"Organization not found: {organization_id}")
            org.payout_account_id = payout_account_id
            org.charges_enabled = charges_enabled
            org.updated_by_id = self._actor_id
        logger.info(
            "payout_account_updated",
            extra={"organization_id": str(organization_id), "charges_enabled": charges_enabled},
        )
        return org.to_dto()

    def add_member(
        self,
        organization_id: UUID,
        email: str,
        full_name: str,
        cohort: str | None = None,
        status: MemberStatus = MemberStatus.ACTIVE,
        processor_customer_id: str | None = None,
    ) -> Member:
        """Register a roster member.  Emails are stored lower-cased."""
        with transaction_boundary(self._session, self._auto_commit, "add_member"):
            member = MemberModel(
                organization_id=organization_id,
                email=email.strip().lower(),
                full_name=full_name,
                cohort=cohort,
                status=status.value,
                processor_customer_id=processor_customer_id,
                created_by_id=self._actor_id,
            )
            self._session.add(member)
            self._session.flush()
        return member.to_dto()

    # =========================================================================
    # Configurations
    # =========================================================================

    def create_configuration(
        self,
        organization_id: UUID,
        period_name: str,
        fiscal_year: int,
        default_amount: Decimal,
        due_date: date | None,
        cohort_amounts: Mapping[str, Decimal] | None = None,
        late_fee_policy: LateFeePolicy | None = None,
        is_current: bool = True,
        notes: str | None = None,
    ) -> DuesConfiguration:
        """
        Create a dues configuration for one organizational period.

        Setting ``is_current`` clears the flag on the organization's other
        configurations.
        """
        default_amount = _positive("default_amount", default_amount, allow_zero=True)
        cohorts = {
            k: _positive(f"cohort_amounts[{k}]", v, allow_zero=True)
            for k, v in (cohort_amounts or {}).items()
        }
        policy = late_fee_policy or LateFeePolicy()

        logger.info("dues_configuration_create_started", extra={
            "organization_id": str(organization_id),
            "period_name": period_name,
            "fiscal_year": fiscal_year,
        })

        with transaction_boundary(self._session, self._auto_commit, "create_configuration"):
            if is_current:
                self._clear_current(organization_id)
            config = DuesConfigurationModel(
                organization_id=organization_id,
                period_name=period_name,
                fiscal_year=fiscal_year,
                is_current=is_current,
                default_amount=default_amount,
                cohort_amounts={k: str(v) for k, v in cohorts.items()},
                due_date=due_date,
                late_fee_enabled=policy.enabled,
                late_fee_amount=policy.amount,
                late_fee_type=policy.fee_type.value,
                late_fee_grace_days=policy.grace_days,
                notes=notes,
                created_by_id=self._actor_id,
            )
            self._session.add(config)
            self._session.flush()

        logger.info("dues_configuration_created", extra={"configuration_id": str(config.id)})
        return config.to_dto()

    def update_configuration(
        self,
        configuration_id: UUID,
        default_amount: Decimal | None = None,
        cohort_amounts: Mapping[str, Decimal] | None = None,
        due_date: date | None = None,
        late_fee_policy: LateFeePolicy | None = None,
        is_current: bool | None = None,
        notes: str | None = None,
    ) -> DuesConfiguration:
        """
        Administrative correction of a configuration.

        Existing obligations keep their base amounts and due dates; only
        newly assigned obligations and later late-fee sweeps see the change.
        """
        with transaction_boundary(self._session, self._auto_commit, "update_configuration"):
            config = self._get_configuration_model(configuration_id)
            if default_amount is not None:
                config.default_amount = _positive("default_amount", default_amount, allow_zero=True)
            if cohort_amounts is not None:
                config.cohort_amounts = {
                    k: str(_positive(f"cohort_amounts[{k}]", v, allow_zero=True))
                    for k, v in cohort_amounts.items()
                }
            if due_date is not None:
                config.due_date = due_date
            if late_fee_policy is not None:
                config.late_fee_enabled = late_fee_policy.enabled
                config.late_fee_amount = late_fee_policy.amount
                config.late_fee_type = late_fee_policy.fee_type.value
                config.late_fee_grace_days = late_fee_policy.grace_days
            if is_current is not None:
                if is_current:
                    self._clear_current(config.organization_id)
                config.is_current = is_current
            if notes is not None:
                config.notes = notes
            config.updated_by_id = self._actor_id

        logger.info("dues_configuration_updated", extra={"configuration_id": str(configuration_id)})
        return config.to_dto()

    def get_configuration(self, configuration_id: UUID) -> DuesConfiguration:
        return self._get_configuration_model(configuration_id).to_dto()

    def get_current_configuration(self, organization_id: UUID) -> DuesConfiguration | None:
        config = self._session.execute(
            select(DuesConfigurationModel).where(
                DuesConfigurationModel.organization_id == organization_id,
                DuesConfigurationModel.is_current.is_(True),
            )
        ).scalar_one_or_none()
        return config.to_dto() if config else None

    # =========================================================================
    # Assignment
    # =========================================================================

    def assign_obligation(
        self,
        configuration_id: UUID,
        member_ref: UUID | str,
        amount: Decimal | None = None,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> MemberObligation:
        """
        Assign dues to one member.

        ``member_ref`` is a member id or an email within the configuration's
        organization.  The amount defaults to the member's cohort override,
        else the configuration default.

        Raises:
            ConfigurationNotFoundError, MemberNotFoundError
            AlreadyAssignedError: the member already has dues for this
                configuration (no row is created).
            InvalidAmountError
        """
        amount = _positive("amount", amount)
        config = self._get_configuration_model(configuration_id)
        member = self._resolve_member(config.organization_id, member_ref)

        logger.info("obligation_assign_started", extra={
            "configuration_id": str(configuration_id),
            "member_id": str(member.id),
        })

        with transaction_boundary(self._session, self._auto_commit, "assign_obligation"):
            existing = self._find_obligation_id(member.id, configuration_id)
            if existing is not None:
                raise AlreadyAssignedError(member.id, configuration_id, existing)
            try:
                with self._session.begin_nested():
                    obligation = self._insert_obligation(config, member, amount, due_date, notes)
            except IntegrityError as exc:
                raise AlreadyAssignedError(member.id, configuration_id) from exc

        logger.info("obligation_assigned", extra={
            "obligation_id": str(obligation.id),
            "member_id": str(member.id),
            "base_amount": str(obligation.base_amount),
        })
        return obligation.to_dto()

    def bulk_assign(
        self,
        configuration_id: UUID,
        filters: AssignmentFilters | None = None,
        amount: Decimal | None = None,
        due_date: date | None = None,
        batch_size: int = 100,
    ) -> BulkAssignmentResult:
        """
        Assign dues to every matching roster member not already assigned.

        Each member runs in its own SAVEPOINT so one failed insert never
        aborts the batch; failures are itemized in ``errors``.  Members that
        already have dues for the configuration are counted as skipped.
        """
        amount = _positive("amount", amount)
        filters = filters or AssignmentFilters()
        config = self._get_configuration_model(configuration_id)

        stmt = select(MemberModel).where(MemberModel.organization_id == config.organization_id)
        if filters.cohort is not None:
            stmt = stmt.where(MemberModel.cohort == filters.cohort)
        if filters.member_status is not None:
            stmt = stmt.where(MemberModel.status == filters.member_status.value)
        members = list(self._session.execute(stmt.order_by(MemberModel.email)).scalars())

        already = set(self._session.execute(
            select(MemberObligationModel.member_id).where(
                MemberObligationModel.configuration_id == configuration_id
            )
        ).scalars())

        logger.info("bulk_assign_started", extra={
            "configuration_id": str(configuration_id),
            "roster_size": len(members),
            "already_assigned": len(already),
        })

        assigned: list[UUID] = []
        skipped = 0
        errors: list[BulkAssignmentError] = []

        try:
            for index, member in enumerate(members, start=1):
                if member.id in already:
                    skipped += 1
                    continue

                savepoint = self._session.begin_nested()
                try:
                    obligation = self._insert_obligation(config, member, amount, due_date, None)
                    savepoint.commit()
                    assigned.append(obligation.id)
                except IntegrityError:
                    # Assigned concurrently by another request
                    savepoint.rollback()
                    skipped += 1
                except (DuesEngineError, SQLAlchemyError) as exc:
                    savepoint.rollback()
                    code = getattr(exc, "code", type(exc).__name__)
                    errors.append(BulkAssignmentError(
                        member_id=member.id, email=member.email, code=str(code), message=str(exc),
                    ))
                    logger.warning("bulk_assign_item_failed", extra={
                        "member_id": str(member.id), "error_code": code,
                    })

                if self._auto_commit and index % batch_size == 0:
                    self._session.commit()

            if self._auto_commit:
                self._session.commit()
            else:
                self._session.flush()
        except Exception:
            if self._auto_commit:
                self._session.rollback()
            raise

        result = BulkAssignmentResult(
            configuration_id=configuration_id,
            assigned=len(assigned),
            skipped=skipped,
            errors=tuple(errors),
            obligation_ids=tuple(assigned),
        )
        logger.info("bulk_assign_completed", extra={
            "configuration_id": str(configuration_id),
            "assigned": result.assigned,
            "skipped": result.skipped,
            "failed": result.failed,
        })
        return result

    # =========================================================================
    # Administrative edits
    # =========================================================================

    def get_obligation(self, obligation_id: UUID) -> MemberObligation:
        obligation = self._session.get(MemberObligationModel, obligation_id)
        if obligation is None:
            raise ObligationNotFoundError(obligation_id)
        return obligation.to_dto()

    def list_obligations(self, configuration_id: UUID) -> tuple[MemberObligation, ...]:
        rows = self._session.execute(
            select(MemberObligationModel)
            .where(MemberObligationModel.configuration_id == configuration_id)
            .order_by(MemberObligationModel.created_at, MemberObligationModel.id)
        ).scalars()
        return tuple(r.to_dto() for r in rows)

    def update_obligation(
        self,
        obligation_id: UUID,
        base_amount: Decimal | None = None,
        adjustment: Decimal | None = None,
        adjustment_reason: str | None = None,
        due_date: date | None = None,
        notes: str | None = None,
        flexible_plan_deadline: date | None = None,
        flexible_plan_notes: str | None = None,
    ) -> MemberObligation:
        """
        Edit an obligation's amounts or dates; ``None`` leaves a field as is.

        Raises:
            ObligationWaivedError: waived obligations cannot be edited.
            AdjustmentReasonRequiredError: nonzero adjustment without reason.
            InvalidAmountError: base amount negative, or the new total would
                fall below what has already been paid.
        """
        with LogContext.bind(obligation_id=obligation_id, actor_id=self._actor_id):
            with transaction_boundary(
                self._session, self._auto_commit, "update_obligation", entity_id=obligation_id,
            ):
                obligation = lock_obligation(self._session, obligation_id)
                if is_waived(obligation):
                    raise ObligationWaivedError(obligation_id)

                if base_amount is not None:
                    obligation.base_amount = _positive("base_amount", base_amount, allow_zero=True)
                if adjustment is not None:
                    obligation.adjustment = round_money(Decimal(adjustment))
                if adjustment_reason is not None:
                    obligation.adjustment_reason = adjustment_reason.strip() or None
                if round_money(obligation.adjustment) != 0 and not obligation.adjustment_reason:
                    raise AdjustmentReasonRequiredError(obligation_id, round_money(obligation.adjustment))
                if due_date is not None:
                    obligation.due_date = due_date
                if notes is not None:
                    obligation.notes = notes
                if flexible_plan_deadline is not None:
                    obligation.flexible_plan_deadline = flexible_plan_deadline
                if flexible_plan_notes is not None:
                    obligation.flexible_plan_notes = flexible_plan_notes

                state = apply_state(obligation, self._clock.today())
                if round_money(obligation.amount_paid) > state.total_amount:
                    raise InvalidAmountError(
                        "total_amount", state.total_amount,
                        f"cannot be below amount already paid {round_money(obligation.amount_paid)}",
                    )
                obligation.updated_by_id = self._actor_id

            logger.info("obligation_updated", extra={
                "total_amount": str(state.total_amount),
                "balance": str(state.balance),
                "status": state.status.value,
            })
        return obligation.to_dto()

    def waive_obligation(self, obligation_id: UUID, reason: str | None = None) -> MemberObligation:
        """
        Waive the obligation: balance 0, status waived.  One-way; waiving an
        already waived obligation is a no-op.
        """
        with LogContext.bind(obligation_id=obligation_id, actor_id=self._actor_id):
            with transaction_boundary(
                self._session, self._auto_commit, "waive_obligation", entity_id=obligation_id,
            ):
                obligation = lock_obligation(self._session, obligation_id)
                if not is_waived(obligation):
                    apply_waive(obligation)
                    if reason:
                        obligation.notes = f"{obligation.notes}\nWaived: {reason}" if obligation.notes else f"Waived: {reason}"
                    obligation.updated_by_id = self._actor_id
            logger.info("obligation_waived", extra={"reason": reason})
        return obligation.to_dto()

    def delete_obligation(self, obligation_id: UUID) -> None:
        """
        Delete an obligation that has never been paid against.

        Raises:
            PaymentsExistError: payments reference the obligation.
            ActivePlanExistsError: an installment plan is active.
        """
        from dues_modules.installments.orm import InstallmentPlanModel
        from dues_modules.payments.orm import PaymentModel

        with transaction_boundary(
            self._session, self._auto_commit, "delete_obligation", entity_id=obligation_id,
        ):
            obligation = lock_obligation(self._session, obligation_id)
            payment_count = self._session.execute(
                select(func.count()).select_from(PaymentModel).where(
                    PaymentModel.obligation_id == obligation_id
                )
            ).scalar_one()
            if payment_count:
                raise PaymentsExistError(obligation_id, payment_count)
            active_plan = self._session.execute(
                select(InstallmentPlanModel.id).where(
                    InstallmentPlanModel.obligation_id == obligation_id,
                    InstallmentPlanModel.status == "active",
                )
            ).scalar_one_or_none()
            if active_plan is not None:
                raise ActivePlanExistsError(obligation_id, active_plan)

            self._session.expunge(obligation)
            self._session.execute(
                delete(MemberObligationModel).where(MemberObligationModel.id == obligation_id)
            )

        logger.info("obligation_deleted", extra={"obligation_id": str(obligation_id)})

    # =========================================================================
    # Read model
    # =========================================================================

    def export_obligations(
        self,
        configuration_id: UUID,
        as_of: date | None = None,
    ) -> tuple[ObligationSummary, ...]:
        """Flat read-only export of every obligation with computed fields."""
        self._get_configuration_model(configuration_id)
        today = as_of or self._clock.today()
        rows = self._session.execute(
            select(MemberObligationModel, MemberModel)
            .join(MemberModel, MemberObligationModel.member_id == MemberModel.id)
            .where(MemberObligationModel.configuration_id == configuration_id)
            .order_by(MemberModel.full_name, MemberModel.email)
        ).all()

        summaries = []
        for obligation, member in rows:
            balance = round_money(obligation.balance)
            summaries.append(ObligationSummary(
                obligation_id=obligation.id,
                member_id=member.id,
                member_name=member.full_name,
                member_email=member.email,
                cohort=member.cohort,
                base_amount=round_money(obligation.base_amount),
                late_fee=round_money(obligation.late_fee),
                adjustment=round_money(obligation.adjustment),
                total_amount=round_money(obligation.total_amount),
                amount_paid=round_money(obligation.amount_paid),
                balance=balance,
                status=effective_status(obligation.status, balance, obligation.due_date, today),
                due_date=obligation.due_date,
                paid_date=obligation.paid_date,
                days_overdue=days_overdue(obligation.status, balance, obligation.due_date, today),
            ))
        return tuple(summaries)

    def configuration_stats(
        self,
        configuration_id: UUID,
        as_of: date | None = None,
    ) -> ConfigurationStats:
        summaries = self.export_obligations(configuration_id, as_of)
        counts = {s.value: 0 for s in ObligationStatus}
        expected = collected = outstanding = late_fees = ZERO
        for row in summaries:
            counts[row.status.value] += 1
            expected += row.total_amount
            collected += row.amount_paid
            outstanding += row.balance
            late_fees += row.late_fee

        rate = ZERO
        if expected > 0:
            rate = (collected / expected * 100).quantize(Decimal("0.1"))
        return ConfigurationStats(
            configuration_id=configuration_id,
            total_members=len(summaries),
            total_expected=expected,
            total_collected=collected,
            total_outstanding=outstanding,
            total_late_fees=late_fees,
            status_counts=counts,
            members_paid=counts[ObligationStatus.PAID.value],
            payment_rate=rate,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _get_configuration_model(self, configuration_id: UUID) -> DuesConfigurationModel:
        config = self._session.get(DuesConfigurationModel, configuration_id)
        if config is None:
            raise ConfigurationNotFoundError(configuration_id)
        return config

    def _resolve_member(self, organization_id: UUID, member_ref: UUID | str) -> MemberModel:
        if isinstance(member_ref, UUID):
            member = self._session.get(MemberModel, member_ref)
            if member is not None and member.organization_id != organization_id:
                member = None
        else:
            member = self._session.execute(
                select(MemberModel).where(
                    MemberModel.organization_id == organization_id,
                    MemberModel.email == member_ref.strip().lower(),
                )
            ).scalar_one_or_none()
        if member is None:
            raise MemberNotFoundError(member_ref)
        return member

    def _find_obligation_id(self, member_id: UUID, configuration_id: UUID) -> UUID | None:
        return self._session.execute(
            select(MemberObligationModel.id).where(
                MemberObligationModel.member_id == member_id,
                MemberObligationModel.configuration_id == configuration_id,
            )
        ).scalar_one_or_none()

    def _insert_obligation(
        self,
        config: DuesConfigurationModel,
        member: MemberModel,
        amount: Decimal | None,
        due_date: date | None,
        notes: str | None,
    ) -> MemberObligationModel:
        base = amount if amount is not None else config.to_dto().amount_for(member.cohort)
        obligation = MemberObligationModel(
            member_id=member.id,
            configuration_id=config.id,
            base_amount=base,
            late_fee=ZERO,
            adjustment=ZERO,
            amount_paid=ZERO,
            total_amount=base,
            balance=base,
            status=ObligationStatus.PENDING.value,
            due_date=due_date or config.due_date,
            notes=notes,
            created_by_id=self._actor_id,
        )
        apply_state(obligation, self._clock.today())
        self._session.add(obligation)
        self._session.flush()
        return obligation

    def _clear_current(self, organization_id: UUID) -> None:
        self._session.execute(
            update(DuesConfigurationModel)
            .where(
                DuesConfigurationModel.organization_id == organization_id,
                DuesConfigurationModel.is_current.is_(True),
            )
            .values(is_current=False)
        )
