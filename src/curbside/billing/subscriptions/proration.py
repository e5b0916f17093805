"""
Billing-cycle date arithmetic and mid-cycle proration.

A cycle ends on ``next_billing_date`` and starts one calendar month earlier.
Proration is computed in minor units and only rounded when converted to an
invoice amount.
"""

import calendar
from datetime import date
from decimal import Decimal

from curbside.billing.subscriptions.models import ProrationResult


def add_months(source: date, months: int) -> date:
    """Shift a date by whole months, clamping the day to the target month's length."""
    month_index = source.month - 1 + months
    year = source.year + month_index // 12
    month = month_index % 12 + 1
    day = min(source.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def first_of_next_month(today: date) -> date:
    return add_months(today.replace(day=1), 1)


def cycle_start(next_billing_date: date) -> date:
    return add_months(next_billing_date, -1)


def days_in_cycle(next_billing_date: date) -> int:
    return (next_billing_date - cycle_start(next_billing_date)).days


def days_remaining(today: date, next_billing_date: date) -> int:
    return max(0, (next_billing_date - today).days)


def prorate(unit_price: int, delta: int, today: date, next_billing_date: date) -> ProrationResult:
    """Charge for ``delta`` extra units over the rest of the current cycle.

    The amount is zero at either boundary: nothing remains in the cycle, or
    the whole cycle remains.
    """
    total_days = days_in_cycle(next_billing_date)
    remaining = days_remaining(today, next_billing_date)

    if delta > 0 and 0 < remaining < total_days:
        amount = Decimal(unit_price) * remaining * delta / Decimal(total_days)
    else:
        amount = Decimal(0)

    return ProrationResult(days_in_cycle=total_days, days_remaining=remaining, amount_minor=amount)
