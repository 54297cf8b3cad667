"""
Test suite for amortization calculations

Annuity payment, principal/interest split and schedule generation.
All financial math must be cent-exact.
"""

import pytest
from decimal import Decimal
from datetime import date

from credit_core.currency import Money
from credit_core.amortization import (
    AmortizationEntry, add_months, build_schedule, compute_monthly_payment,
    effective_rate, split_payment, total_cost, total_interest
)


class TestMonthlyPayment:
    """Test fixed annuity payment"""

    def test_reference_calculation(self):
        """100 000 at 31% for 12 months"""
        assert compute_monthly_payment(Decimal('100000'), Decimal('31'), 12) == Decimal('9797.97')

    def test_zero_rate_divides_principal(self):
        assert compute_monthly_payment(Decimal('12000'), Decimal('0'), 12) == Decimal('1000.00')

    def test_zero_rate_rounds_half_up(self):
        assert compute_monthly_payment(Decimal('100'), Decimal('0'), 3) == Decimal('33.33')
        assert compute_monthly_payment(Decimal('0.05'), Decimal('0'), 2) == Decimal('0.03')

    @pytest.mark.parametrize("principal,rate,term", [
        (Decimal('0'), Decimal('10'), 12),
        (Decimal('-100'), Decimal('10'), 12),
        (Decimal('1000'), Decimal('-1'), 12),
        (Decimal('1000'), Decimal('10'), 0),
        (Decimal('1000'), Decimal('10'), -5),
    ])
    def test_invalid_inputs_return_zero(self, principal, rate, term):
        assert compute_monthly_payment(principal, rate, term) == Decimal('0.00')

    def test_tiny_principal_is_strictly_positive(self):
        """A positive principal always yields at least one kopek"""
        assert compute_monthly_payment(Decimal('0.01'), Decimal('0'), 360) == Decimal('0.01')
        assert compute_monthly_payment(Decimal('0.01'), Decimal('21'), 360) > 0

    def test_accepts_strings_and_ints(self):
        assert compute_monthly_payment('100000', 31, 12) == Decimal('9797.97')


class TestSplitPayment:
    """Test principal/interest split of a single payment"""

    def test_first_payment_split(self):
        principal, interest = split_payment(
            1, 12, Decimal('9797.97'), Decimal('31'), Decimal('100000')
        )
        # 100000 * 0.31 / 12 = 2583.333.. -> 2583.33
        assert interest == Decimal('2583.33')
        assert principal == Decimal('7214.64')
        assert principal + interest == Decimal('9797.97')

    def test_final_payment_retires_remaining_principal(self):
        principal, interest = split_payment(
            12, 12, Decimal('9797.97'), Decimal('31'), Decimal('9600.00')
        )
        assert principal == Decimal('9600.00')
        assert interest == Decimal('197.97')

    def test_final_payment_interest_never_negative(self):
        principal, interest = split_payment(3, 3, Decimal('33.33'), Decimal('0'), Decimal('33.34'))
        assert principal == Decimal('33.34')
        assert interest == Decimal('0.00')

    def test_principal_clamped_to_remaining(self):
        principal, interest = split_payment(2, 12, Decimal('500'), Decimal('0'), Decimal('100'))
        assert principal == Decimal('100.00')
        assert interest == Decimal('0.00')

    def test_final_payment_after_early_payoff_is_zero(self):
        assert split_payment(360, 360, Decimal('0.01'), Decimal('21'), Decimal('0')) == (
            Decimal('0.00'), Decimal('0.00')
        )


class TestBuildSchedule:
    """Test schedule generation"""

    def test_reference_schedule(self):
        schedule = build_schedule(Decimal('100000'), Decimal('31'), 12, date(2024, 1, 15))

        assert len(schedule) == 12
        assert [e.payment_number for e in schedule] == list(range(1, 13))
        assert schedule[0].due_date == date(2024, 2, 15)
        assert schedule[-1].due_date == date(2025, 1, 15)
        assert all(isinstance(e, AmortizationEntry) for e in schedule)

        total_principal = sum(e.principal_amount.amount for e in schedule)
        assert total_principal == Decimal('100000.00')
        assert schedule[-1].remaining_balance == Money(Decimal('0'))

        for entry in schedule[:-1]:
            assert entry.payment_amount == Money(Decimal('9797.97'))
        assert schedule[-1].payment_amount == schedule[-1].principal_amount + schedule[-1].interest_amount

    def test_interest_declines_over_time(self):
        schedule = build_schedule(Decimal('500000'), Decimal('21'), 24, date(2024, 3, 1))
        interests = [e.interest_amount.amount for e in schedule[:-1]]
        assert interests == sorted(interests, reverse=True)

    def test_remaining_balance_chain(self):
        schedule = build_schedule(Decimal('25000'), Decimal('18.5'), 7, date(2024, 6, 30))
        remaining = Money(Decimal('25000'))
        for entry in schedule:
            remaining = remaining - entry.principal_amount
            assert entry.remaining_balance == remaining

    @pytest.mark.parametrize("principal,rate,term", [
        (Decimal('100000'), Decimal('31'), 12),
        (Decimal('1'), Decimal('21'), 360),
        (Decimal('0.01'), Decimal('0'), 360),
        (Decimal('99999999.99'), Decimal('26.75'), 360),
        (Decimal('777.77'), Decimal('0'), 7),
        (Decimal('5000'), Decimal('99.9'), 1),
    ])
    def test_principal_sum_is_exact(self, principal, rate, term):
        schedule = build_schedule(principal, rate, term, date(2024, 1, 31))

        assert len(schedule) == term
        assert sum(e.principal_amount.amount for e in schedule) == principal
        assert schedule[-1].remaining_balance.is_zero()
        for entry in schedule:
            assert not entry.principal_amount.is_negative()
            assert not entry.interest_amount.is_negative()
            assert not entry.remaining_balance.is_negative()

    def test_tiny_principal_charges_nothing_after_payoff(self):
        schedule = build_schedule(Decimal('0.01'), Decimal('21'), 360, date(2024, 1, 15))

        assert schedule[0].principal_amount == Money(Decimal('0.01'))
        assert schedule[0].remaining_balance.is_zero()
        for entry in schedule[1:]:
            assert entry.payment_amount.is_zero()
            assert entry.interest_amount.is_zero()
        assert sum(e.payment_amount.amount for e in schedule) == Decimal('0.01')

    def test_month_end_due_dates_are_clamped(self):
        schedule = build_schedule(Decimal('1200'), Decimal('0'), 3, date(2024, 1, 31))
        assert [e.due_date for e in schedule] == [
            date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)
        ]

    def test_invalid_inputs_give_empty_schedule(self):
        assert build_schedule(Decimal('0'), Decimal('10'), 12, date(2024, 1, 1)) == []
        assert build_schedule(Decimal('100'), Decimal('10'), 0, date(2024, 1, 1)) == []

    def test_entry_rejects_inconsistent_payment(self):
        with pytest.raises(ValueError):
            AmortizationEntry(
                payment_number=1,
                due_date=date(2024, 1, 1),
                payment_amount=Money(Decimal('100')),
                principal_amount=Money(Decimal('60')),
                interest_amount=Money(Decimal('30')),
                remaining_balance=Money(Decimal('0'))
            )


class TestHelpers:
    """Test date and cost helpers"""

    def test_add_months_year_rollover(self):
        assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)
        assert add_months(date(2024, 1, 15), 12) == date(2025, 1, 15)

    def test_total_cost_and_interest(self):
        assert total_cost(Decimal('9797.97'), 12) == Decimal('117575.64')
        assert total_interest(Decimal('100000'), Decimal('9797.97'), 12) == Decimal('17575.64')

    def test_effective_rate(self):
        assert effective_rate(Decimal('100000'), Decimal('9797.97'), 12) == Decimal('17.58')
        assert effective_rate(Decimal('0'), Decimal('1'), 12) == Decimal('0.00')

    def test_effective_rate_from_schedule(self):
        schedule = build_schedule(Decimal('12000'), Decimal('0'), 12, date(2024, 1, 1))
        assert effective_rate(Decimal('12000'), Decimal('1000'), 12, schedule) == Decimal('0.00')
