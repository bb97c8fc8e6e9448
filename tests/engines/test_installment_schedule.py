"""
Tests for installment splitting and calendar layout.
"""

from datetime import date
from decimal import Decimal

import pytest

from dues_engines.schedule import (
    build_schedule,
    resolve_deadline,
    schedule_dates,
    split_amount,
)


class TestSplitAmount:

    def test_even_split(self):
        assert split_amount(Decimal("100.00"), 2) == (Decimal("50.00"), Decimal("50.00"))

    def test_remainder_on_first(self):
        assert split_amount(Decimal("100.00"), 3) == (
            Decimal("33.34"), Decimal("33.33"), Decimal("33.33"),
        )

    def test_large_remainder(self):
        amounts = split_amount(Decimal("0.11"), 12)
        assert amounts[0] == Decimal("0.11")
        assert all(a == Decimal("0.00") for a in amounts[1:])
        assert sum(amounts) == Decimal("0.11")

    def test_sum_is_exact(self):
        amounts = split_amount(Decimal("487.53"), 7)
        assert sum(amounts) == Decimal("487.53")
        assert len(amounts) == 7

    @pytest.mark.parametrize("balance", [Decimal("0"), Decimal("-1.00")])
    def test_non_positive_balance(self, balance):
        with pytest.raises(ValueError):
            split_amount(balance, 3)

    def test_zero_installments(self):
        with pytest.raises(ValueError):
            split_amount(Decimal("100.00"), 0)


class TestScheduleDates:

    def test_first_on_start_last_on_deadline(self):
        dates = schedule_dates(date(2024, 9, 1), date(2024, 12, 1), 4)
        assert dates == (
            date(2024, 9, 1),
            date(2024, 10, 1),
            date(2024, 10, 31),
            date(2024, 12, 1),
        )

    def test_two_installments(self):
        assert schedule_dates(date(2024, 9, 1), date(2024, 10, 1), 2) == (
            date(2024, 9, 1), date(2024, 10, 1),
        )

    def test_dates_non_decreasing_when_crowded(self):
        dates = schedule_dates(date(2024, 9, 1), date(2024, 9, 3), 6)
        assert list(dates) == sorted(dates)
        assert dates[0] == date(2024, 9, 1)
        assert dates[-1] == date(2024, 9, 3)

    @pytest.mark.parametrize("deadline", [date(2024, 9, 1), date(2024, 8, 31)])
    def test_deadline_must_follow_start(self, deadline):
        with pytest.raises(ValueError):
            schedule_dates(date(2024, 9, 1), deadline, 3)


class TestBuildSchedule:

    def test_numbers_amounts_and_dates(self):
        schedule = build_schedule(
            balance=Decimal("100.00"),
            num_installments=3,
            start_date=date(2024, 9, 1),
            deadline=date(2024, 11, 1),
        )

        assert [i.installment_number for i in schedule] == [1, 2, 3]
        assert schedule[0].amount == Decimal("33.34")
        assert schedule[0].scheduled_date == date(2024, 9, 1)
        assert schedule[-1].scheduled_date == date(2024, 11, 1)


class TestResolveDeadline:

    def test_flexible_deadline_wins(self):
        assert resolve_deadline(date(2025, 1, 1), date(2024, 12, 1), date(2024, 11, 1)) == date(2025, 1, 1)

    def test_obligation_due_date_next(self):
        assert resolve_deadline(None, date(2024, 12, 1), date(2024, 11, 1)) == date(2024, 12, 1)

    def test_configuration_due_date_last(self):
        assert resolve_deadline(None, None, date(2024, 11, 1)) == date(2024, 11, 1)

    def test_none(self):
        assert resolve_deadline(None, None, None) is None
