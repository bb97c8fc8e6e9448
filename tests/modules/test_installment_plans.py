"""
Tests for installment eligibility, payment methods and plan creation.

Covers:
- Precondition order, each failure with its own error
- Orchestrated first charge: succeeded, processing, requires_action, decline
- Transport failure then retry replays the original charge
- Skip-first mode (first installment collected outside the engine)
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from dues_engines.status import ObligationStatus
from dues_kernel.exceptions import (
    ActivePlanExistsError,
    ChargeDeclinedError,
    DeadlinePassedError,
    EligibilityNotFoundError,
    IneligibleForInstallmentsError,
    InvalidInstallmentCountError,
    MemberNotFoundError,
    NoDeadlineError,
    NotObligationOwnerError,
    ObligationNotFoundError,
    PaymentMethodOwnershipError,
    PaymentMethodRequiredError,
    PayoutAccountNotReadyError,
    PlanSizeNotAllowedError,
    ProcessorUnavailableError,
    ZeroBalanceError,
)
from dues_modules.installments.models import InstallmentStatus, PlanStatus
from dues_modules.payments.models import PaymentMethod


class TestEligibility:

    def test_default_sizes(self, installment_service, obligation):
        eligibility = installment_service.set_eligibility(obligation.id, is_eligible=True)

        assert eligibility.allowed_sizes == (2, 3)
        assert eligibility.allows(3)
        assert not eligibility.allows(4)

    def test_replace_decision(self, installment_service, obligation):
        installment_service.set_eligibility(obligation.id, is_eligible=True, allowed_sizes=(2,))
        installment_service.set_eligibility(
            obligation.id, is_eligible=False, allowed_sizes=(4, 6), notes="Revoked",
        )

        eligibility = installment_service.get_eligibility(obligation.id)
        assert eligibility.is_eligible is False
        assert eligibility.allowed_sizes == (4, 6)
        assert eligibility.notes == "Revoked"

    @pytest.mark.parametrize("size", [1, 13])
    def test_size_outside_policy(self, installment_service, obligation, size):
        with pytest.raises(InvalidInstallmentCountError):
            installment_service.set_eligibility(obligation.id, is_eligible=True, allowed_sizes=(2, size))

    def test_unknown_obligation(self, installment_service):
        with pytest.raises(ObligationNotFoundError):
            installment_service.set_eligibility(uuid4(), is_eligible=True)

    def test_none_recorded(self, installment_service, obligation):
        assert installment_service.get_eligibility(obligation.id) is None


class TestAttachPaymentMethod:

    def test_card_saved(self, installment_service, processor, member):
        customer_id = processor.get_or_create_customer(member.email, member.full_name)
        method_id = processor.add_payment_method(customer_id, method_type="card", last4="1111")

        saved = installment_service.attach_payment_method(member.id, method_id)

        assert saved.method_type == "card"
        assert saved.last4 == "1111"
        assert saved.brand == "visa"

    def test_bank_account_normalized(self, installment_service, processor, member):
        customer_id = processor.get_or_create_customer(member.email, member.full_name)
        method_id = processor.add_payment_method(customer_id, method_type="us_bank_account", last4="6789")

        saved = installment_service.attach_payment_method(member.id, method_id)

        assert saved.method_type == "bank_account"
        assert saved.brand is None

    def test_attach_twice_returns_same_row(self, installment_service, processor, member):
        customer_id = processor.get_or_create_customer(member.email, member.full_name)
        method_id = processor.add_payment_method(customer_id)

        first = installment_service.attach_payment_method(member.id, method_id)
        second = installment_service.attach_payment_method(member.id, method_id, is_default=True)

        assert first.id == second.id
        assert second.is_default is True

    def test_someone_elses_method(self, installment_service, processor, member, other_member):
        stranger = processor.get_or_create_customer(other_member.email, other_member.full_name)
        method_id = processor.add_payment_method(stranger)

        with pytest.raises(PaymentMethodOwnershipError):
            installment_service.attach_payment_method(member.id, method_id)

    def test_unknown_method(self, installment_service, member):
        with pytest.raises(PaymentMethodOwnershipError):
            installment_service.attach_payment_method(member.id, "pm_missing")

    def test_unknown_member(self, installment_service):
        with pytest.raises(MemberNotFoundError):
            installment_service.attach_payment_method(uuid4(), "pm_anything")


class TestCreatePlanPreconditions:

    @pytest.mark.parametrize("size", [1, 13])
    def test_count_checked_first(self, installment_service, member, size):
        # Input validation runs before the obligation is even looked up
        with pytest.raises(InvalidInstallmentCountError):
            installment_service.create_plan(member.id, uuid4(), size, None)

    def test_method_required(self, installment_service, member, eligible_obligation):
        with pytest.raises(PaymentMethodRequiredError):
            installment_service.create_plan(member.id, eligible_obligation.id, 3, None)

    def test_not_owner_before_eligibility(self, installment_service, other_member, obligation, card_method):
        # No eligibility recorded either; ownership is checked first
        with pytest.raises(NotObligationOwnerError):
            installment_service.create_plan(other_member.id, obligation.id, 3, card_method)

    def test_zero_balance(self, installment_service, recorder, member, eligible_obligation, card_method):
        recorder.record_payment(eligible_obligation.id, Decimal("300.00"), PaymentMethod.CASH)

        with pytest.raises(ZeroBalanceError):
            installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

    def test_waived_is_zero_balance(self, installment_service, dues_service, member, eligible_obligation, card_method):
        dues_service.waive_obligation(eligible_obligation.id)

        with pytest.raises(ZeroBalanceError):
            installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

    def test_no_eligibility(self, installment_service, member, obligation, card_method):
        with pytest.raises(EligibilityNotFoundError):
            installment_service.create_plan(member.id, obligation.id, 3, card_method)

    def test_ineligible(self, installment_service, member, obligation, card_method):
        installment_service.set_eligibility(obligation.id, is_eligible=False)

        with pytest.raises(IneligibleForInstallmentsError):
            installment_service.create_plan(member.id, obligation.id, 3, card_method)

    def test_size_not_allowed(self, installment_service, member, eligible_obligation, card_method):
        with pytest.raises(PlanSizeNotAllowedError):
            installment_service.create_plan(member.id, eligible_obligation.id, 5, card_method)

    def test_active_plan_exists(self, installment_service, member, eligible_obligation, card_method):
        installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        with pytest.raises(ActivePlanExistsError):
            installment_service.create_plan(member.id, eligible_obligation.id, 2, card_method)

    def test_no_deadline(self, installment_service, dues_service, organization, member, card_method):
        config = dues_service.create_configuration(
            organization_id=organization.id,
            period_name="Open Ended",
            fiscal_year=2024,
            default_amount=Decimal("200.00"),
            due_date=None,
        )
        obligation = dues_service.assign_obligation(config.id, member.id)
        installment_service.set_eligibility(obligation.id, is_eligible=True)

        with pytest.raises(NoDeadlineError):
            installment_service.create_plan(member.id, obligation.id, 2, card_method)

    def test_deadline_passed(self, installment_service, deterministic_clock, member, eligible_obligation, card_method):
        deterministic_clock.set_date(date(2024, 12, 1))

        with pytest.raises(DeadlinePassedError):
            installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

    def test_flexible_deadline_extends(
        self, installment_service, dues_service, deterministic_clock, member, eligible_obligation, card_method,
    ):
        dues_service.update_obligation(eligible_obligation.id, flexible_plan_deadline=date(2025, 2, 1))
        deterministic_clock.set_date(date(2024, 12, 5))

        result = installment_service.create_plan(member.id, eligible_obligation.id, 2, card_method)

        assert result.plan.deadline_date == date(2025, 2, 1)

    def test_unsaved_method(self, installment_service, processor, member, eligible_obligation, card_method):
        customer_id = processor.get_or_create_customer(member.email, member.full_name)
        unsaved = processor.add_payment_method(customer_id)

        with pytest.raises(PaymentMethodRequiredError):
            installment_service.create_plan(member.id, eligible_obligation.id, 3, unsaved)

    def test_payout_not_ready(
        self, installment_service, dues_service, organization, member, eligible_obligation, card_method,
    ):
        dues_service.update_payout_account(organization.id, "acct_test", charges_enabled=False)

        with pytest.raises(PayoutAccountNotReadyError):
            installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

    def test_failed_precondition_charges_nothing(self, installment_service, processor, member, obligation, card_method):
        with pytest.raises(EligibilityNotFoundError):
            installment_service.create_plan(member.id, obligation.id, 3, card_method)

        assert processor.charge_count == 0


class TestOrchestratedFirstCharge:

    def test_succeeded(self, installment_service, dues_service, recorder, processor, member, eligible_obligation, card_method):
        result = installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        assert result.first_payment_status is InstallmentStatus.PAID
        assert result.payment_intent_id is not None
        assert result.requires_action is False

        plan = installment_service.get_plan(result.plan.id)
        assert plan.status is PlanStatus.ACTIVE
        assert plan.installments_paid == 1
        assert plan.total_amount == Decimal("300.00")
        assert plan.deadline_date == date(2024, 12, 1)
        assert plan.next_payment_date == date(2024, 10, 16)
        assert [i.status for i in plan.installments] == [
            InstallmentStatus.PAID, InstallmentStatus.SCHEDULED, InstallmentStatus.SCHEDULED,
        ]
        assert [i.scheduled_date for i in plan.installments] == [
            date(2024, 9, 1), date(2024, 10, 16), date(2024, 12, 1),
        ]
        assert sum(i.amount for i in plan.installments) == Decimal("300.00")

        obligation = dues_service.get_obligation(eligible_obligation.id)
        assert obligation.balance == Decimal("200.00")
        assert obligation.status is ObligationStatus.PARTIAL

        payments = recorder.list_payments(eligible_obligation.id)
        assert len(payments) == 1
        assert payments[0].method is PaymentMethod.INSTALLMENT
        assert payments[0].reference == result.payment_intent_id
        assert payments[0].installment_payment_id == plan.installments[0].id

    def test_charge_request(self, installment_service, processor, member, organization, eligible_obligation, card_method):
        result = installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        request = processor.requests[0]
        # 100.00 on a card is grossed up to 103.30; the org nets 99.00
        assert request.amount_minor == 10330
        assert request.transfer_amount_minor == 9900
        assert request.transfer_destination == "acct_test"
        assert request.currency == "usd"
        assert request.payment_method_id == card_method
        assert request.off_session is True
        assert request.idempotency_key.startswith("installments:first_charge:")
        assert request.metadata["type"] == "installment"
        assert request.metadata["installment_number"] == "1"
        assert request.metadata["plan_id"] == str(result.plan.id)
        assert request.metadata["organization_id"] == str(organization.id)

    def test_bank_account_not_grossed_up(self, installment_service, processor, member, eligible_obligation):
        customer_id = processor.get_or_create_customer(member.email, member.full_name)
        method_id = processor.add_payment_method(customer_id, method_type="us_bank_account")
        installment_service.attach_payment_method(member.id, method_id)

        installment_service.create_plan(member.id, eligible_obligation.id, 3, method_id)

        request = processor.requests[0]
        assert request.amount_minor == 10000
        assert request.transfer_amount_minor == 9820

    def test_processing(self, installment_service, dues_service, processor, member, eligible_obligation, card_method):
        processor.script_outcomes("processing")

        result = installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        assert result.first_payment_status is InstallmentStatus.PROCESSING
        assert result.client_secret is None
        assert result.plan.installments[0].status is InstallmentStatus.PROCESSING
        assert result.plan.installments_paid == 0
        assert dues_service.get_obligation(eligible_obligation.id).balance == Decimal("300.00")

    def test_requires_action(self, installment_service, processor, member, eligible_obligation, card_method):
        processor.script_outcomes("requires_action")

        result = installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        assert result.requires_action is True
        assert result.client_secret == f"{result.payment_intent_id}_secret"
        assert result.first_payment_status is InstallmentStatus.PROCESSING

    def test_decline_persists_nothing(
        self, installment_service, dues_service, processor, member, eligible_obligation, card_method,
    ):
        processor.script_outcomes("requires_payment_method")

        with pytest.raises(ChargeDeclinedError) as exc_info:
            installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        assert exc_info.value.processor_status == "requires_payment_method"
        assert installment_service.get_active_plan(eligible_obligation.id) is None
        assert dues_service.get_obligation(eligible_obligation.id).balance == Decimal("300.00")

    def test_new_card_after_decline_is_new_charge(
        self, installment_service, dues_service, processor, member, eligible_obligation, card_method,
    ):
        processor.script_outcomes("requires_payment_method")
        with pytest.raises(ChargeDeclinedError):
            installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        customer_id = processor.get_or_create_customer(member.email, member.full_name)
        new_card = processor.add_payment_method(customer_id, last4="1881")
        installment_service.attach_payment_method(member.id, new_card)

        result = installment_service.create_plan(member.id, eligible_obligation.id, 3, new_card)

        assert result.first_payment_status is InstallmentStatus.PAID
        assert processor.charge_count == 2
        assert processor.requests[0].idempotency_key != processor.requests[1].idempotency_key
        assert processor.requests[1].payment_method_id == new_card
        assert dues_service.get_obligation(eligible_obligation.id).balance == Decimal("200.00")

    def test_bank_account_after_card_decline(
        self, installment_service, dues_service, processor, member, eligible_obligation, card_method,
    ):
        processor.script_outcomes("requires_payment_method")
        with pytest.raises(ChargeDeclinedError):
            installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        customer_id = processor.get_or_create_customer(member.email, member.full_name)
        bank = processor.add_payment_method(customer_id, method_type="us_bank_account", last4="6789")
        installment_service.attach_payment_method(member.id, bank)

        result = installment_service.create_plan(member.id, eligible_obligation.id, 3, bank)

        assert result.first_payment_status is InstallmentStatus.PAID
        assert processor.charge_count == 2
        assert processor.requests[1].amount_minor == 10000
        assert dues_service.get_obligation(eligible_obligation.id).balance == Decimal("200.00")

    def test_same_card_after_decline_replays_decline(
        self, installment_service, processor, member, eligible_obligation, card_method,
    ):
        processor.script_outcomes("requires_payment_method")
        with pytest.raises(ChargeDeclinedError):
            installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        with pytest.raises(ChargeDeclinedError):
            installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        assert processor.charge_count == 1
        assert installment_service.get_active_plan(eligible_obligation.id) is None

    def test_transport_failure_persists_nothing(
        self, installment_service, processor, member, eligible_obligation, card_method,
    ):
        processor.fail_next("create_payment_intent")

        with pytest.raises(ProcessorUnavailableError) as exc_info:
            installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        assert exc_info.value.retryable is True
        assert installment_service.get_active_plan(eligible_obligation.id) is None
        assert processor.charge_count == 0

    def test_retry_after_lost_response_replays_charge(
        self, installment_service, dues_service, processor, member, eligible_obligation, card_method,
    ):
        processor.fail_next("create_payment_intent", after_commit=True)

        with pytest.raises(ProcessorUnavailableError):
            installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)
        assert processor.charge_count == 1

        result = installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        assert processor.charge_count == 1
        assert len(processor.requests) == 2
        assert processor.requests[0].idempotency_key == processor.requests[1].idempotency_key
        assert result.first_payment_status is InstallmentStatus.PAID
        assert dues_service.get_obligation(eligible_obligation.id).balance == Decimal("200.00")

    def test_new_plan_after_cancel_is_new_charge(
        self, installment_service, processor, member, eligible_obligation, card_method,
    ):
        processor.script_outcomes("processing")
        first = installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)
        installment_service.cancel_plan(first.plan.id)

        installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        assert processor.charge_count == 2
        assert processor.requests[0].idempotency_key != processor.requests[1].idempotency_key

    def test_plan_logs(self, installment_service, member, eligible_obligation, card_method, captured_logs):
        result = installment_service.create_plan(member.id, eligible_obligation.id, 3, card_method)

        created = [r for r in captured_logs() if r["message"] == "installment_plan_created"]
        assert len(created) == 1
        assert created[0]["plan_id"] == str(result.plan.id)
        assert created[0]["first_payment_status"] == "paid"


class TestSkipFirstPayment:

    def test_records_first_without_charge(
        self, installment_service, dues_service, recorder, processor, member, eligible_obligation,
    ):
        customer_id = processor.get_or_create_customer(member.email, member.full_name)
        method_id = processor.add_payment_method(customer_id)

        result = installment_service.create_plan(
            member.id, eligible_obligation.id, 2, method_id, skip_first_payment=True,
        )

        assert result.first_payment_status is InstallmentStatus.PAID
        assert result.payment_intent_id is None
        assert processor.requests == []
        assert result.plan.installments_paid == 1
        assert dues_service.get_obligation(eligible_obligation.id).balance == Decimal("150.00")
        payments = recorder.list_payments(eligible_obligation.id)
        assert payments[0].notes == "Installment 1 of 2"

    def test_method_is_verified(self, installment_service, processor, member, other_member, eligible_obligation):
        stranger = processor.get_or_create_customer(other_member.email, other_member.full_name)
        method_id = processor.add_payment_method(stranger)

        with pytest.raises(PaymentMethodOwnershipError):
            installment_service.create_plan(
                member.id, eligible_obligation.id, 2, method_id, skip_first_payment=True,
            )

        assert installment_service.get_active_plan(eligible_obligation.id) is None
