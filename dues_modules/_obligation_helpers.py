"""
Obligation locking and state-machine write-back shared by every mutator.

Every service that changes amount_paid, late_fee, base_amount or adjustment
goes through ``lock_obligation`` then ``apply_state`` so that the
balance/status state machine stays the single authority over status and
balance.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dues_engines.status import ObligationState, ObligationStatus, resolve_state, waive_state
from dues_kernel.db.types import round_money
from dues_kernel.exceptions import ObligationNotFoundError
from dues_modules.dues.orm import MemberObligationModel


def lock_obligation(session: Session, obligation_id: UUID) -> MemberObligationModel:
    """
    Load the obligation with a row lock (SELECT ... FOR UPDATE).

    The row is refreshed from the database even when already present in the
    identity map, so callers always see the committed state they locked.

    Raises:
        ObligationNotFoundError
    """
    stmt = (
        select(MemberObligationModel)
        .where(MemberObligationModel.id == obligation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    obligation = session.execute(stmt).scalar_one_or_none()
    if obligation is None:
        raise ObligationNotFoundError(obligation_id)
    return obligation


def apply_state(obligation: MemberObligationModel, today: date) -> ObligationState:
    """Run the state machine over the row's amounts and write the result back."""
    state = resolve_state(
        base_amount=round_money(obligation.base_amount),
        late_fee=round_money(obligation.late_fee),
        adjustment=round_money(obligation.adjustment),
        amount_paid=round_money(obligation.amount_paid),
        current_status=obligation.status,
        paid_date=obligation.paid_date,
        today=today,
    )
    _write_state(obligation, state)
    return state


def apply_waive(obligation: MemberObligationModel) -> ObligationState:
    state = waive_state(
        base_amount=round_money(obligation.base_amount),
        late_fee=round_money(obligation.late_fee),
        adjustment=round_money(obligation.adjustment),
        paid_date=obligation.paid_date,
    )
    _write_state(obligation, state)
    return state


def is_waived(obligation: MemberObligationModel) -> bool:
    return ObligationStatus(obligation.status) is ObligationStatus.WAIVED


def _write_state(obligation: MemberObligationModel, state: ObligationState) -> None:
    obligation.total_amount = state.total_amount
    obligation.balance = state.balance
    obligation.status = state.status.value
    obligation.paid_date = state.paid_date
