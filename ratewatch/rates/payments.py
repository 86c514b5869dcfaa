"""Fixed-rate mortgage payment helpers.

Monthly payment uses the standard annuity formula::

    M = P * r * (1 + r)**n / ((1 + r)**n - 1)

with ``r`` the monthly rate (annual percent / 100 / 12) and ``n`` the number of
monthly payments. A zero rate degenerates to ``P / n``.
"""

from __future__ import annotations

from decimal import Decimal


def monthly_payment(principal: float, annual_rate_pct: float | Decimal, term_years: int = 30) -> float:
    n = int(term_years) * 12
    if n <= 0:
        raise ValueError("term_years must be positive")
    r = float(annual_rate_pct) / 100.0 / 12.0
    if r == 0:
        return round(float(principal) / n, 2)
    growth = (1 + r) ** n
    return round(float(principal) * r * growth / (growth - 1), 2)


def monthly_savings(
    loan_amount: float,
    current_rate_pct: float | Decimal,
    new_rate_pct: float | Decimal,
    term_years: int = 30,
) -> float:
    """Payment reduction from moving ``loan_amount`` to ``new_rate_pct``; never negative."""
    if float(current_rate_pct) <= float(new_rate_pct):
        return 0.0
    current = monthly_payment(loan_amount, current_rate_pct, term_years)
    new = monthly_payment(loan_amount, new_rate_pct, term_years)
    return round(current - new, 2)


def lifetime_savings(monthly: float, term_years: int = 30) -> float:
    return round(monthly * term_years * 12, 2)
