"""
Amortization Module

Pure annuity calculations: fixed monthly payment, the principal/interest
split of a single payment, and full schedule generation. Interest rates are
annual percentages (31 means 31%), amounts are Decimal, rounding is half away
from zero to two places.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import List, Optional, Tuple
import calendar

from .currency import Money, Currency, DEFAULT_CURRENCY, CENT, round_money, to_decimal


ZERO = Decimal('0.00')
MONTHS_PER_YEAR = Decimal('12')
HUNDRED = Decimal('100')


@dataclass
class AmortizationEntry:
    """Single entry in amortization schedule"""
    payment_number: int
    due_date: date
    payment_amount: Money
    principal_amount: Money
    interest_amount: Money
    remaining_balance: Money

    def __post_init__(self):
        # Validate that payment equals principal + interest
        calculated_payment = self.principal_amount + self.interest_amount
        if calculated_payment != self.payment_amount:
            raise ValueError(f"Payment amount {self.payment_amount.to_string()} does not equal "
                             f"principal {self.principal_amount.to_string()} + "
                             f"interest {self.interest_amount.to_string()}")


def monthly_rate(annual_rate_percent) -> Decimal:
    """Annual percentage rate to a monthly fraction"""
    return to_decimal(annual_rate_percent) / HUNDRED / MONTHS_PER_YEAR


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compute_monthly_payment(principal, annual_rate_percent, term_months: int) -> Decimal:
    """
    Fixed annuity payment: P * r * (1+r)^n / ((1+r)^n - 1)

    Returns zero for a non-positive principal, a negative rate or a
    non-positive term. A positive principal always yields at least 0.01.
    """
    principal = to_decimal(principal)
    annual_rate = to_decimal(annual_rate_percent)
    if principal <= 0 or annual_rate < 0 or term_months <= 0:
        return ZERO

    rate = monthly_rate(annual_rate)
    if rate == 0:
        payment = principal / Decimal(term_months)
    else:
        factor = (Decimal('1') + rate) ** term_months
        payment = principal * rate * factor / (factor - Decimal('1'))

    return max(round_money(payment), CENT)


def split_payment(payment_number: int, term_months: int, monthly_payment,
                  annual_rate_percent, remaining_principal) -> Tuple[Decimal, Decimal]:
    """
    Split one scheduled payment into (principal, interest).

    Interest accrues on the remaining principal for one month. The final
    payment retires whatever principal is left so the schedule sums exactly
    to the original amount; its interest absorbs the rounding drift.
    """
    payment = to_decimal(monthly_payment)
    remaining = round_money(remaining_principal)

    if remaining <= 0:
        # Retired early by the clamp below, nothing left to pay
        return ZERO, ZERO

    if payment_number >= term_months:
        principal = remaining
        interest = max(round_money(payment - principal), ZERO)
        return principal, interest

    interest = round_money(remaining * monthly_rate(annual_rate_percent))
    principal = round_money(payment - interest)
    principal = min(max(principal, ZERO), remaining)
    return principal, interest


def build_schedule(principal, annual_rate_percent, term_months: int, start_date: date,
                   monthly_payment=None,
                   currency: Currency = DEFAULT_CURRENCY) -> List[AmortizationEntry]:
    """
    Generate the full monthly schedule.

    Payment N is due ``start_date + N`` calendar months. The last entry's
    remaining balance is exactly zero.
    """
    principal = round_money(principal)
    if principal <= 0 or term_months <= 0:
        return []
    if monthly_payment is None:
        monthly_payment = compute_monthly_payment(principal, annual_rate_percent, term_months)

    schedule = []
    remaining = principal
    for payment_num in range(1, term_months + 1):
        principal_part, interest_part = split_payment(
            payment_num, term_months, monthly_payment, annual_rate_percent, remaining
        )
        remaining = round_money(remaining - principal_part)

        schedule.append(AmortizationEntry(
            payment_number=payment_num,
            due_date=add_months(start_date, payment_num),
            payment_amount=Money(principal_part + interest_part, currency),
            principal_amount=Money(principal_part, currency),
            interest_amount=Money(interest_part, currency),
            remaining_balance=Money(remaining, currency)
        ))

    return schedule


def total_cost(monthly_payment, term_months: int) -> Decimal:
    """Total amount the borrower pays over the whole term"""
    return round_money(to_decimal(monthly_payment) * term_months)


def total_interest(principal, monthly_payment, term_months: int) -> Decimal:
    return round_money(total_cost(monthly_payment, term_months) - to_decimal(principal))


def effective_rate(principal, monthly_payment, term_months: int,
                   schedule: Optional[List[AmortizationEntry]] = None) -> Decimal:
    """
    Overpayment as a percentage of principal.

    When a schedule is given its actual totals are used instead of
    ``monthly_payment * term``.
    """
    principal = to_decimal(principal)
    if principal <= 0:
        return ZERO
    if schedule:
        interest = sum((entry.interest_amount.amount for entry in schedule), ZERO)
    else:
        interest = total_interest(principal, monthly_payment, term_months)
    return round_money(interest / principal * HUNDRED)
