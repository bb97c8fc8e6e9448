"""
Late Fee Module Service - on-demand late-fee sweep and administrator-chosen
custom late fees.

Thin glue layer that:
1. Selects candidate obligations of a configuration (unpaid, not waived,
   never assessed)
2. Locks each candidate, re-checks it with the pure late-fee rules and adds
   the fee through the balance/status state machine
3. Stamps ``late_fee_assessed_on`` so a re-run never charges twice

Triggering is external (CLI / scheduler); nothing here runs on a timer.

Usage:
    service = LateFeeService(session, clock=clock)
    result = service.sweep_late_fees(configuration_id)
    result.applied, result.total_fees
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dues_config import get_settings
from dues_config.schema import BalanceTier, DuesSettings
from dues_engines.late_fees import (
    balance_in_tiers,
    compute_late_fee,
    is_late_fee_applicable,
)
from dues_engines.status import ObligationStatus
from dues_kernel.db.base import SYSTEM_ACTOR_ID
from dues_kernel.db.types import ZERO, round_money
from dues_kernel.domain.clock import Clock, SystemClock
from dues_kernel.exceptions import (
    ConfigurationNotFoundError,
    InvalidAmountError,
    ValidationError,
)
from dues_kernel.logging_config import get_logger
from dues_modules._obligation_helpers import apply_state, lock_obligation
from dues_modules._transaction import transaction_boundary
from dues_modules.dues.orm import DuesConfigurationModel, MemberObligationModel
from dues_modules.late_fees.models import CustomLateFeePreview, LateFeeSweepResult

logger = get_logger("modules.late_fees.service")


class LateFeeService:
    """
    Late-fee assessment over one configuration.

    Transaction boundary: one transaction per sweep.  Each obligation is row
    locked before it is re-checked and charged.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: DuesSettings | None = None,
        actor_id: UUID | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()
        self._actor_id = actor_id or SYSTEM_ACTOR_ID
        self._auto_commit = auto_commit

    def sweep_late_fees(
        self,
        configuration_id: UUID,
        as_of: date | None = None,
    ) -> LateFeeSweepResult:
        """
        Assess the configuration's late fee on every qualifying obligation.

        Idempotent: an obligation is charged at most once, tracked by its
        assessment marker.  A disabled policy yields an empty result.
        """
        as_of = as_of or self._clock.today()
        config = self._get_configuration(configuration_id)
        policy = config.late_fee_policy()

        logger.info("late_fee_sweep_started", extra={
            "configuration_id": str(configuration_id),
            "as_of": as_of,
            "enabled": policy.enabled,
            "fee_type": policy.fee_type.value,
        })

        if not policy.enabled:
            return LateFeeSweepResult(configuration_id, as_of, 0, 0, ZERO)

        applied: list[UUID] = []
        skipped = 0
        total = ZERO

        with transaction_boundary(self._session, self._auto_commit, "sweep_late_fees"):
            for obligation_id in self._candidate_ids(configuration_id):
                obligation = lock_obligation(self._session, obligation_id)
                due = obligation.due_date or config.due_date
                if not is_late_fee_applicable(
                    policy=policy,
                    balance=round_money(obligation.balance),
                    status=obligation.status,
                    due_date=due,
                    as_of=as_of,
                    already_assessed=obligation.late_fee_assessed_on is not None,
                ):
                    skipped += 1
                    continue

                fee = compute_late_fee(policy, round_money(obligation.base_amount))
                self._assess(obligation, fee, as_of)
                applied.append(obligation.id)
                total += fee

        logger.info("late_fee_sweep_completed", extra={
            "configuration_id": str(configuration_id),
            "applied": len(applied),
            "skipped": skipped,
            "total_fees": total,
        })
        return LateFeeSweepResult(
            configuration_id=configuration_id,
            as_of=as_of,
            applied=len(applied),
            skipped=skipped,
            total_fees=total,
            obligation_ids=tuple(applied),
        )

    def preview_custom_late_fee(
        self,
        configuration_id: UUID,
        amount: Decimal,
        tier_names: Sequence[str],
        exclude_partial: bool = True,
    ) -> CustomLateFeePreview:
        """Which obligations ``apply_custom_late_fee`` would charge; no writes."""
        amount = self._validate_custom_amount(amount)
        tiers = self._resolve_tiers(tier_names)
        self._get_configuration(configuration_id)

        ids = []
        for obligation in self._session.execute(
            select(MemberObligationModel).where(
                MemberObligationModel.id.in_(self._candidate_ids(configuration_id))
            )
        ).scalars():
            if self._custom_fee_applies(obligation, tiers, exclude_partial):
                ids.append(obligation.id)

        return CustomLateFeePreview(
            configuration_id=configuration_id,
            amount=amount,
            tier_names=tuple(tier_names),
            exclude_partial=exclude_partial,
            obligation_ids=tuple(ids),
            total_fees=amount * len(ids),
        )

    def apply_custom_late_fee(
        self,
        configuration_id: UUID,
        amount: Decimal,
        tier_names: Sequence[str],
        exclude_partial: bool = True,
        as_of: date | None = None,
    ) -> LateFeeSweepResult:
        """
        Charge a flat administrator-chosen fee to unassessed, unpaid obligations
        whose balance falls in the selected tiers.

        Uses the same assessment marker as the sweep, so neither charges an
        obligation the other already charged.

        Raises:
            InvalidAmountError: amount not in (0, max_custom_late_fee].
            ValidationError: no tiers selected or unknown tier name.
        """
        as_of = as_of or self._clock.today()
        amount = self._validate_custom_amount(amount)
        tiers = self._resolve_tiers(tier_names)
        self._get_configuration(configuration_id)

        logger.info("custom_late_fee_started", extra={
            "configuration_id": str(configuration_id),
            "amount": amount,
            "tiers": list(tier_names),
            "exclude_partial": exclude_partial,
        })

        applied: list[UUID] = []
        skipped = 0
        with transaction_boundary(self._session, self._auto_commit, "apply_custom_late_fee"):
            for obligation_id in self._candidate_ids(configuration_id):
                obligation = lock_obligation(self._session, obligation_id)
                if not self._custom_fee_applies(obligation, tiers, exclude_partial):
                    skipped += 1
                    continue
                self._assess(obligation, amount, as_of)
                applied.append(obligation.id)

        total = amount * len(applied)
        logger.info("custom_late_fee_completed", extra={
            "configuration_id": str(configuration_id),
            "applied": len(applied),
            "total_fees": total,
        })
        return LateFeeSweepResult(
            configuration_id=configuration_id,
            as_of=as_of,
            applied=len(applied),
            skipped=skipped,
            total_fees=total,
            obligation_ids=tuple(applied),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _get_configuration(self, configuration_id: UUID) -> DuesConfigurationModel:
        config = self._session.get(DuesConfigurationModel, configuration_id)
        if config is None:
            raise ConfigurationNotFoundError(configuration_id)
        return config

    def _candidate_ids(self, configuration_id: UUID) -> list[UUID]:
        return list(self._session.execute(
            select(MemberObligationModel.id)
            .where(
                MemberObligationModel.configuration_id == configuration_id,
                MemberObligationModel.status != ObligationStatus.WAIVED.value,
                MemberObligationModel.balance > 0,
                MemberObligationModel.late_fee_assessed_on.is_(None),
            )
            .order_by(MemberObligationModel.id)
        ).scalars())

    def _assess(self, obligation: MemberObligationModel, fee: Decimal, as_of: date) -> None:
        obligation.late_fee = round_money(obligation.late_fee) + fee
        obligation.late_fee_assessed_on = as_of
        obligation.updated_by_id = self._actor_id
        state = apply_state(obligation, self._clock.today())
        logger.debug("late_fee_assessed", extra={
            "obligation_id": str(obligation.id),
            "fee": fee,
            "balance": state.balance,
        })

    def _custom_fee_applies(
        self,
        obligation: MemberObligationModel,
        tiers: tuple[BalanceTier, ...],
        exclude_partial: bool,
    ) -> bool:
        # Custom fees ignore the due date and grace period
        if obligation.late_fee_assessed_on is not None:
            return False
        if ObligationStatus(obligation.status) is ObligationStatus.WAIVED:
            return False
        if round_money(obligation.balance) <= 0:
            return False
        if exclude_partial and round_money(obligation.amount_paid) > 0:
            return False
        return balance_in_tiers(round_money(obligation.balance), tiers)

    def _validate_custom_amount(self, amount: Decimal) -> Decimal:
        limit = self._settings.late_fees.max_custom_late_fee
        amount = round_money(Decimal(amount))
        if amount <= 0 or amount > limit:
            raise InvalidAmountError("amount", amount, f"must be greater than 0 and at most {limit}")
        return amount

    def _resolve_tiers(self, tier_names: Sequence[str]) -> tuple[BalanceTier, ...]:
        if not tier_names:
            raise ValidationError("At least one balance tier must be selected")
        tiers = []
        for name in tier_names:
            try:
                tiers.append(self._settings.late_fees.tier(name))
            except KeyError:
                raise ValidationError(f"Unknown balance tier: {name}") from None
        return tuple(tiers)
