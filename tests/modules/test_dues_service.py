"""
Tests for DuesService: configurations, assignment, administrative edits and
the export read model.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from dues_engines.status import ObligationStatus
from dues_kernel.db.base import SYSTEM_ACTOR_ID
from dues_kernel.exceptions import (
    ActivePlanExistsError,
    AdjustmentReasonRequiredError,
    AlreadyAssignedError,
    ConfigurationNotFoundError,
    InvalidAmountError,
    MemberNotFoundError,
    ObligationNotFoundError,
    ObligationWaivedError,
    PaymentsExistError,
)
from dues_modules.dues.models import AssignmentFilters, MemberStatus
from dues_modules.dues.orm import MemberObligationModel, OrganizationModel
from dues_modules.dues.service import DuesService
from dues_modules.payments.models import PaymentMethod


class TestConfigurations:

    def test_create_sets_current(self, dues_service, organization, configuration):
        current = dues_service.get_current_configuration(organization.id)
        assert current.id == configuration.id
        assert current.late_fee_policy.enabled is True

    def test_new_current_clears_previous(self, dues_service, organization, configuration):
        spring = dues_service.create_configuration(
            organization_id=organization.id,
            period_name="Spring 2025",
            fiscal_year=2025,
            default_amount=Decimal("320.00"),
            due_date=date(2025, 3, 1),
        )

        assert dues_service.get_current_configuration(organization.id).id == spring.id
        assert dues_service.get_configuration(configuration.id).is_current is False

    def test_cohort_amount_lookup(self, configuration):
        assert configuration.amount_for("Freshman") == Decimal("350.00")
        assert configuration.amount_for("Senior") == Decimal("300.00")
        assert configuration.amount_for(None) == Decimal("300.00")

    def test_negative_default_rejected(self, dues_service, organization):
        with pytest.raises(InvalidAmountError):
            dues_service.create_configuration(
                organization_id=organization.id,
                period_name="Bad",
                fiscal_year=2024,
                default_amount=Decimal("-1.00"),
                due_date=None,
            )

    def test_update_does_not_touch_existing_obligations(self, dues_service, configuration, obligation):
        dues_service.update_configuration(configuration.id, default_amount=Decimal("999.00"))

        assert dues_service.get_obligation(obligation.id).base_amount == Decimal("300.00")

    def test_unknown_configuration(self, dues_service):
        with pytest.raises(ConfigurationNotFoundError):
            dues_service.get_configuration(uuid4())


class TestAssignObligation:

    def test_default_amount(self, obligation, configuration):
        assert obligation.base_amount == Decimal("300.00")
        assert obligation.total_amount == Decimal("300.00")
        assert obligation.balance == Decimal("300.00")
        assert obligation.amount_paid == Decimal("0.00")
        assert obligation.status is ObligationStatus.PENDING
        assert obligation.due_date == configuration.due_date

    def test_cohort_override(self, dues_service, configuration, other_member):
        obligation = dues_service.assign_obligation(configuration.id, other_member.id)
        assert obligation.base_amount == Decimal("350.00")

    def test_by_email_case_insensitive(self, dues_service, configuration, member):
        obligation = dues_service.assign_obligation(configuration.id, "ADA@example.org")
        assert obligation.member_id == member.id

    def test_explicit_amount_and_due_date(self, dues_service, configuration, member):
        obligation = dues_service.assign_obligation(
            configuration.id, member.id, amount=Decimal("120.50"), due_date=date(2024, 10, 15),
        )
        assert obligation.base_amount == Decimal("120.50")
        assert obligation.due_date == date(2024, 10, 15)

    def test_duplicate_rejected(self, dues_service, configuration, member, obligation):
        with pytest.raises(AlreadyAssignedError):
            dues_service.assign_obligation(configuration.id, member.id)

        assert len(dues_service.list_obligations(configuration.id)) == 1

    def test_unknown_member(self, dues_service, configuration):
        with pytest.raises(MemberNotFoundError):
            dues_service.assign_obligation(configuration.id, "nobody@example.org")

    def test_member_of_other_organization(self, dues_service, configuration):
        other_org = dues_service.create_organization("Beta Chapter")
        outsider = dues_service.add_member(other_org.id, "out@example.org", "Outsider")

        with pytest.raises(MemberNotFoundError):
            dues_service.assign_obligation(configuration.id, outsider.id)

    def test_zero_amount_rejected(self, dues_service, configuration, member):
        with pytest.raises(InvalidAmountError):
            dues_service.assign_obligation(configuration.id, member.id, amount=Decimal("0"))


class TestBulkAssign:

    def test_assigns_active_roster(self, dues_service, organization, configuration, member, other_member):
        dues_service.add_member(organization.id, "old@example.org", "Old Timer", status=MemberStatus.ALUMNI)

        result = dues_service.bulk_assign(configuration.id)

        assert result.assigned == 2
        assert result.skipped == 0
        assert result.failed == 0
        assert len(dues_service.list_obligations(configuration.id)) == 2

    def test_skips_already_assigned(self, dues_service, configuration, obligation, other_member):
        result = dues_service.bulk_assign(configuration.id)

        assert result.assigned == 1
        assert result.skipped == 1

    def test_rerun_is_noop(self, dues_service, configuration, member, other_member):
        dues_service.bulk_assign(configuration.id)
        second = dues_service.bulk_assign(configuration.id)

        assert second.assigned == 0
        assert second.skipped == 2

    def test_cohort_filter(self, dues_service, configuration, member, other_member):
        result = dues_service.bulk_assign(configuration.id, AssignmentFilters(cohort="Freshman"))

        assert result.assigned == 1
        obligations = dues_service.list_obligations(configuration.id)
        assert obligations[0].member_id == other_member.id
        assert obligations[0].base_amount == Decimal("350.00")

    def test_amount_override(self, dues_service, configuration, member, other_member):
        dues_service.bulk_assign(configuration.id, amount=Decimal("75.00"))

        assert {o.base_amount for o in dues_service.list_obligations(configuration.id)} == {Decimal("75.00")}


class TestUpdateObligation:

    def test_adjustment_requires_reason(self, dues_service, obligation):
        with pytest.raises(AdjustmentReasonRequiredError):
            dues_service.update_obligation(obligation.id, adjustment=Decimal("-50.00"))

    def test_adjustment_with_reason(self, dues_service, obligation):
        updated = dues_service.update_obligation(
            obligation.id, adjustment=Decimal("-50.00"), adjustment_reason="Scholarship",
        )

        assert updated.total_amount == Decimal("250.00")
        assert updated.balance == Decimal("250.00")
        assert updated.adjustment_reason == "Scholarship"

    def test_raising_total_reopens_paid(self, dues_service, recorder, obligation):
        recorder.record_payment(obligation.id, Decimal("300.00"), PaymentMethod.CHECK)
        assert dues_service.get_obligation(obligation.id).status is ObligationStatus.PAID

        updated = dues_service.update_obligation(obligation.id, base_amount=Decimal("350.00"))

        assert updated.status is ObligationStatus.PARTIAL
        assert updated.balance == Decimal("50.00")
        assert updated.paid_date is None

    def test_total_below_paid_rejected(self, dues_service, recorder, obligation):
        recorder.record_payment(obligation.id, Decimal("200.00"), PaymentMethod.CASH)

        with pytest.raises(InvalidAmountError):
            dues_service.update_obligation(obligation.id, base_amount=Decimal("100.00"))

        assert dues_service.get_obligation(obligation.id).base_amount == Decimal("300.00")

    def test_flexible_deadline(self, dues_service, obligation):
        updated = dues_service.update_obligation(
            obligation.id,
            flexible_plan_deadline=date(2025, 2, 1),
            flexible_plan_notes="Hardship extension",
        )
        assert updated.flexible_plan_deadline == date(2025, 2, 1)

    def test_waived_cannot_be_edited(self, dues_service, obligation):
        dues_service.waive_obligation(obligation.id)

        with pytest.raises(ObligationWaivedError):
            dues_service.update_obligation(obligation.id, base_amount=Decimal("10.00"))

    def test_unknown_obligation(self, dues_service):
        with pytest.raises(ObligationNotFoundError):
            dues_service.update_obligation(uuid4(), notes="x")

    def test_edit_records_actor(self, session, dues_service, obligation, test_actor_id):
        dues_service.update_obligation(obligation.id, notes="Called member")

        row = session.get(MemberObligationModel, obligation.id)
        assert row.created_by_id == test_actor_id
        assert row.updated_by_id == test_actor_id
        assert row.created_at is not None

    def test_no_actor_records_system(self, session):
        org = DuesService(session).create_organization("Beta Chapter")

        row = session.get(OrganizationModel, org.id)
        assert row.created_by_id == SYSTEM_ACTOR_ID
        assert row.updated_by_id is None


class TestWaiveObligation:

    def test_waive_zeroes_balance(self, dues_service, obligation):
        waived = dues_service.waive_obligation(obligation.id, reason="Financial hardship")

        assert waived.status is ObligationStatus.WAIVED
        assert waived.balance == Decimal("0.00")
        assert "Financial hardship" in waived.notes

    def test_waive_twice_is_noop(self, dues_service, obligation):
        dues_service.waive_obligation(obligation.id)
        again = dues_service.waive_obligation(obligation.id)

        assert again.status is ObligationStatus.WAIVED

    def test_waive_partially_paid(self, dues_service, recorder, obligation):
        recorder.record_payment(obligation.id, Decimal("100.00"), PaymentMethod.CASH)

        waived = dues_service.waive_obligation(obligation.id)

        assert waived.amount_paid == Decimal("100.00")
        assert waived.balance == Decimal("0.00")


class TestDeleteObligation:

    def test_delete_unpaid(self, dues_service, configuration, obligation):
        dues_service.delete_obligation(obligation.id)

        with pytest.raises(ObligationNotFoundError):
            dues_service.get_obligation(obligation.id)
        assert dues_service.list_obligations(configuration.id) == ()

    def test_delete_with_eligibility_cascades(self, dues_service, installment_service, eligible_obligation):
        dues_service.delete_obligation(eligible_obligation.id)

        assert installment_service.get_eligibility(eligible_obligation.id) is None

    def test_payments_block_delete(self, dues_service, recorder, obligation):
        recorder.record_payment(obligation.id, Decimal("10.00"), PaymentMethod.CASH)

        with pytest.raises(PaymentsExistError):
            dues_service.delete_obligation(obligation.id)

    def test_active_plan_blocks_delete(
        self, dues_service, installment_service, processor, eligible_obligation, member, card_method,
    ):
        # First charge still processing: an active plan but no payment rows yet
        processor.script_outcomes("processing")
        installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        with pytest.raises(ActivePlanExistsError):
            dues_service.delete_obligation(eligible_obligation.id)


class TestExport:

    def test_export_rows(self, dues_service, recorder, configuration, obligation, other_member):
        dues_service.assign_obligation(configuration.id, other_member.id)
        recorder.record_payment(obligation.id, Decimal("100.00"), PaymentMethod.CHECK)

        rows = dues_service.export_obligations(configuration.id)

        assert [r.member_name for r in rows] == ["Ada Lovelace", "Grace Hopper"]
        ada = rows[0]
        assert ada.amount_paid == Decimal("100.00")
        assert ada.balance == Decimal("200.00")
        assert ada.status is ObligationStatus.PARTIAL
        assert ada.days_overdue == 0

    def test_export_derives_overdue(self, dues_service, configuration, obligation):
        rows = dues_service.export_obligations(configuration.id, as_of=date(2024, 12, 11))

        assert rows[0].status is ObligationStatus.OVERDUE
        assert rows[0].days_overdue == 10
        # stored status is untouched
        assert dues_service.get_obligation(obligation.id).status is ObligationStatus.PENDING

    def test_as_row_strings(self, dues_service, configuration, obligation):
        row = dues_service.export_obligations(configuration.id)[0].as_row()

        assert row["base_amount"] == "300.00"
        assert row["status"] == "pending"
        assert row["due_date"] == "2024-12-01"
        assert row["paid_date"] == ""
        assert row["cohort"] == "Senior"


class TestConfigurationStats:

    def test_totals(self, dues_service, recorder, configuration, obligation, other_member):
        second = dues_service.assign_obligation(configuration.id, other_member.id)
        recorder.record_payment(second.id, Decimal("350.00"), PaymentMethod.ZELLE)
        recorder.record_payment(obligation.id, Decimal("50.00"), PaymentMethod.CASH)

        stats = dues_service.configuration_stats(configuration.id)

        assert stats.total_members == 2
        assert stats.total_expected == Decimal("650.00")
        assert stats.total_collected == Decimal("400.00")
        assert stats.total_outstanding == Decimal("250.00")
        assert stats.members_paid == 1
        assert stats.status_counts["paid"] == 1
        assert stats.status_counts["partial"] == 1
        assert stats.payment_rate == Decimal("61.5")
