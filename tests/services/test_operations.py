"""
Tests for the DuesOperations facade: every call runs in its own committed
transaction and domain failures come back as OperationResult errors.
"""

from datetime import date
from decimal import Decimal

import pytest

from dues_kernel.exceptions import IdempotencyKeyReusedError, OverpaymentError
from dues_services.operations import DuesOperations, OperationResult


@pytest.fixture
def ops(committed_session_factory, processor, deterministic_clock, settings, test_actor_id):
    return DuesOperations(
        processor,
        session_factory=committed_session_factory,
        clock=deterministic_clock,
        settings=settings,
        actor_id=test_actor_id,
    )


def _balance(ops, seed) -> Decimal:
    rows = ops.export_obligations(seed.configuration_id).data
    return next(r.balance for r in rows if r.obligation_id == seed.obligation_id)


class TestOperationResult:

    def test_failure_payload(self):
        result = OperationResult.failure(OverpaymentError("ob-1", Decimal("10.00"), Decimal("5.00")))

        assert result.success is False
        assert result.error["code"] == "OVERPAYMENT"
        assert result.error["kind"] == "validation"
        assert result.error["amount"] == "10.00"
        assert "message" in result.error

    def test_key_reuse_payload(self):
        result = OperationResult.failure(IdempotencyKeyReusedError("installments:first_charge:x", 10330, 10000))

        assert result.error["code"] == "IDEMPOTENCY_KEY_REUSED"
        assert result.error["kind"] == "external_service"
        assert result.error["amount_minor"] == 10000
        assert "retryable" not in result.error


class TestPaymentsThroughFacade:

    def test_record_payment(self, ops, committed_obligation):
        result = ops.record_payment(committed_obligation.obligation_id, Decimal("100.00"), "check")

        assert result.success
        assert result.data.balance == Decimal("200.00")
        assert _balance(ops, committed_obligation) == Decimal("200.00")

    def test_overpayment_returns_error(self, ops, committed_obligation):
        result = ops.record_payment(committed_obligation.obligation_id, Decimal("301.00"), "cash")

        assert result.success is False
        assert result.error["code"] == "OVERPAYMENT"
        assert _balance(ops, committed_obligation) == Decimal("300.00")

    def test_failure_logged(self, ops, committed_obligation, captured_logs):
        ops.record_payment(committed_obligation.obligation_id, Decimal("301.00"), "cash")

        failed = [r for r in captured_logs() if r["message"] == "operation_failed"]
        assert failed[0]["operation"] == "record_payment"
        assert failed[0]["error_code"] == "OVERPAYMENT"


class TestDuesThroughFacade:

    def test_duplicate_assignment(self, ops, committed_obligation):
        result = ops.assign_obligation(committed_obligation.configuration_id, committed_obligation.member_id)

        assert result.success is False
        assert result.error["code"] == "ALREADY_ASSIGNED"
        assert result.error["kind"] == "conflict"

    def test_bulk_assign_skips_existing(self, ops, committed_obligation):
        result = ops.bulk_assign(committed_obligation.configuration_id)

        assert result.success
        assert result.data.assigned == 0
        assert result.data.skipped == 1

    def test_stats(self, ops, committed_obligation):
        result = ops.configuration_stats(committed_obligation.configuration_id)

        assert result.data.total_members == 1
        assert result.data.total_outstanding == Decimal("300.00")

    def test_sweep_with_policy_disabled(self, ops, committed_obligation):
        result = ops.sweep_late_fees(committed_obligation.configuration_id, as_of=date(2025, 1, 1))

        assert result.success
        assert result.data.applied == 0


class TestInstallmentsThroughFacade:

    def test_plan_reconcile_and_charge(self, ops, processor, committed_obligation):
        processor.script_outcomes("processing")
        created = ops.create_installment_plan(
            committed_obligation.member_id,
            committed_obligation.obligation_id,
            2,
            committed_obligation.card_method,
        )
        assert created.success
        assert _balance(ops, committed_obligation) == Decimal("300.00")

        settled = ops.reconcile_payment_intent(created.data.payment_intent_id, "succeeded", 15479)
        assert settled.success
        assert _balance(ops, committed_obligation) == Decimal("150.00")

        run = ops.charge_due_installments(as_of=date(2024, 12, 1))
        assert run.data.charged == 1
        assert _balance(ops, committed_obligation) == Decimal("0.00")

    def test_transport_failure_is_retryable(self, ops, processor, committed_obligation):
        processor.fail_next("create_payment_intent")

        result = ops.create_installment_plan(
            committed_obligation.member_id,
            committed_obligation.obligation_id,
            3,
            committed_obligation.card_method,
        )

        assert result.error["code"] == "PROCESSOR_UNAVAILABLE"
        assert result.error["retryable"] is True

    def test_unknown_intent(self, ops, committed_obligation):
        result = ops.reconcile_payment_intent("pi_nowhere", "succeeded")

        assert result.error["code"] == "UNKNOWN_PAYMENT_INTENT"
        assert result.error["kind"] == "reconciliation"
