from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from models import DebtStatus


@dataclass(frozen=True)
class InterestCalculation:
    principal_cents: int
    interest_cents: int
    days_elapsed: int
    days_total: int

    @property
    def total_cents(self) -> int:
        return self.principal_cents + self.interest_cents


def calculate_interest(
    principal_cents: int,
    rate_bps: int,
    lent_date: date,
    due_date: Optional[date],
    today: date,
) -> InterestCalculation:
    """Simple annual interest on a lent amount.

    Interest accrues over whichever is longer: the days elapsed since the
    money was lent, or the agreed term up to the due date. A zero rate
    accrues nothing.
    """
    if rate_bps <= 0:
        return InterestCalculation(principal_cents, 0, 0, 0)

    end = due_date or today
    days_elapsed = max(0, (today - lent_date).days)
    days_total = max(0, (end - lent_date).days)
    days = max(days_elapsed, days_total)

    interest = (
        Decimal(principal_cents) * Decimal(rate_bps) / Decimal(10_000) * days / 365
    )
    interest_cents = int(interest.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return InterestCalculation(principal_cents, interest_cents, days_elapsed, days_total)


def remaining_with_interest(
    principal_cents: int,
    rate_bps: int,
    lent_date: date,
    due_date: Optional[date],
    repaid_cents: int,
    today: date,
) -> int:
    calc = calculate_interest(principal_cents, rate_bps, lent_date, due_date, today)
    return max(0, calc.total_cents - repaid_cents)


def derive_status(current: DebtStatus, repaid_cents: int, owed_cents: int) -> DebtStatus:
    if owed_cents > 0 and repaid_cents >= owed_cents:
        return DebtStatus.fully_paid
    if repaid_cents > 0:
        return DebtStatus.partially_paid
    if current in (DebtStatus.overdue, DebtStatus.defaulted):
        return current
    return DebtStatus.active
