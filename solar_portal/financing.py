# solar_portal/financing.py
from __future__ import annotations

from typing import List, NamedTuple

from solar_portal.catalog import DEPOSIT_RATE, LOAN_INTEREST_RATE, LOAN_TERMS_MONTHS, MIN_DEPOSIT


class FinancingOption(NamedTuple):
    term: int
    interest_rate: float
    monthly_payment: float
    total_cost: int


def calculate_monthly_payment(principal: float, annual_rate: float, term_months: int) -> float:
    """Amortising loan payment (PMT), rounded to cents."""
    if principal < 0:
        raise ValueError("principal must be >= 0")
    if annual_rate < 0:
        raise ValueError("annual_rate must be >= 0")
    if term_months <= 0:
        raise ValueError("term_months must be > 0")

    monthly_rate = annual_rate / 12
    if monthly_rate == 0:
        return round(principal / term_months, 2)

    growth = (1 + monthly_rate) ** term_months
    return round(principal * monthly_rate * growth / (growth - 1), 2)


def get_financing_options(total_price: float) -> List[FinancingOption]:
    options = []
    for term in LOAN_TERMS_MONTHS:
        monthly = calculate_monthly_payment(total_price, LOAN_INTEREST_RATE, term)
        options.append(FinancingOption(term, LOAN_INTEREST_RATE, monthly, int(round(monthly * term))))
    return options


def calculate_deposit(total_price: float) -> float:
    """30% or the minimum deposit, whichever is higher, never more than the total."""
    if not total_price or total_price <= 0:
        return 0.0
    return round(min(max(total_price * DEPOSIT_RATE, MIN_DEPOSIT), total_price), 2)
