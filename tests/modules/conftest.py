"""
Module-level fixtures: a payout-ready organization, a small roster, a current
dues configuration and the module services bound to the rollback session.
"""

from datetime import date
from decimal import Decimal

import pytest

from dues_engines.late_fees import LateFeePolicy
from dues_modules.dues.service import DuesService
from dues_modules.installments.service import InstallmentService
from dues_modules.late_fees.service import LateFeeService
from dues_modules.payments.service import PaymentRecorder

DUE_DATE = date(2024, 12, 1)


@pytest.fixture
def dues_service(session, deterministic_clock, test_actor_id):
    return DuesService(session, clock=deterministic_clock, actor_id=test_actor_id)


@pytest.fixture
def late_fee_service(session, deterministic_clock, settings, test_actor_id):
    return LateFeeService(session, clock=deterministic_clock, settings=settings, actor_id=test_actor_id)


@pytest.fixture
def recorder(session, deterministic_clock, test_actor_id):
    return PaymentRecorder(session, clock=deterministic_clock, actor_id=test_actor_id)


@pytest.fixture
def installment_service(session, processor, deterministic_clock, settings, test_actor_id):
    return InstallmentService(
        session,
        processor,
        clock=deterministic_clock,
        settings=settings,
        actor_id=test_actor_id,
    )


@pytest.fixture
def organization(dues_service):
    return dues_service.create_organization(
        "Alpha Chapter", payout_account_id="acct_test", charges_enabled=True,
    )


@pytest.fixture
def member(dues_service, organization):
    return dues_service.add_member(organization.id, "ada@example.org", "Ada Lovelace", cohort="Senior")


@pytest.fixture
def other_member(dues_service, organization):
    return dues_service.add_member(organization.id, "grace@example.org", "Grace Hopper", cohort="Freshman")


@pytest.fixture
def configuration(dues_service, organization):
    return dues_service.create_configuration(
        organization_id=organization.id,
        period_name="Fall 2024",
        fiscal_year=2024,
        default_amount=Decimal("300.00"),
        due_date=DUE_DATE,
        cohort_amounts={"Freshman": Decimal("350.00")},
        late_fee_policy=LateFeePolicy(enabled=True, amount=Decimal("25.00"), grace_days=5),
    )


@pytest.fixture
def obligation(dues_service, configuration, member):
    return dues_service.assign_obligation(configuration.id, member.id)


@pytest.fixture
def eligible_obligation(installment_service, obligation):
    installment_service.set_eligibility(obligation.id, is_eligible=True, allowed_sizes=(2, 3, 4))
    return obligation


@pytest.fixture
def card_method(processor, installment_service, member):
    """A card saved for the member; returns the processor method id."""
    customer_id = processor.get_or_create_customer(member.email, member.full_name)
    method_id = processor.add_payment_method(customer_id, method_type="card")
    installment_service.attach_payment_method(member.id, method_id, is_default=True)
    return method_id
