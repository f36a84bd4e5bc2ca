from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from models import RecurringFrequency, Transaction, TransactionType


MAX_OCCURRENCES = 1000


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    # Snap to the last day when the month is too short.
    day = min(desired_day, days_in_month(year, month))
    return date(year, month, day)


def nth_occurrence(frequency: RecurringFrequency, anchor: date, n: int) -> date:
    if frequency == RecurringFrequency.daily:
        return anchor + timedelta(days=n)
    if frequency == RecurringFrequency.weekly:
        return anchor + timedelta(weeks=n)
    if frequency == RecurringFrequency.monthly:
        return _add_months(anchor, n, desired_day=anchor.day)
    return _add_months(anchor, 12 * n, desired_day=anchor.day)


def _first_index(frequency: RecurringFrequency, anchor: date, start: date) -> int:
    if start <= anchor:
        return 1
    if frequency == RecurringFrequency.daily:
        return (start - anchor).days
    if frequency == RecurringFrequency.weekly:
        return max(1, (start - anchor).days // 7)
    months = (start.year - anchor.year) * 12 + (start.month - anchor.month)
    if frequency == RecurringFrequency.monthly:
        return max(1, months - 1)
    return max(1, months // 12 - 1)


def occurrences_between(
    frequency: RecurringFrequency, anchor: date, start: date, end: date
) -> Iterator[date]:
    """Dates after `anchor` on which a recurring entry falls due within [start, end]."""
    n = _first_index(frequency, anchor, start)
    for _ in range(MAX_OCCURRENCES):
        current = nth_occurrence(frequency, anchor, n)
        if current > end:
            return
        if current >= start:
            yield current
        n += 1


def next_occurrence(
    frequency: RecurringFrequency, anchor: date, after: date
) -> date:
    n = _first_index(frequency, anchor, after)
    while True:
        current = nth_occurrence(frequency, anchor, n)
        if current > after:
            return current
        n += 1


@dataclass(frozen=True)
class ProjectedOccurrence:
    transaction_id: int
    title: str
    type: TransactionType
    amount_cents: int
    date: date
    frequency: RecurringFrequency


class RecurringProjector:
    """Projects future occurrences of recurring incomes and expenses.

    Nothing is posted; the projection is read-only and only feeds the
    calendar.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def recurring_transactions(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.is_recurring.is_(True),
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return self.session.scalars(stmt).all()

    def project(self, start: date, end: date) -> list[ProjectedOccurrence]:
        if start > end:
            raise ValueError("Start date must be before end date")
        out: list[ProjectedOccurrence] = []
        for txn in self.recurring_transactions():
            frequency = txn.recurring_frequency or RecurringFrequency.monthly
            for occurrence in occurrences_between(frequency, txn.date, start, end):
                out.append(
                    ProjectedOccurrence(
                        transaction_id=txn.id,
                        title=txn.title,
                        type=txn.type,
                        amount_cents=txn.amount_cents,
                        date=occurrence,
                        frequency=frequency,
                    )
                )
        out.sort(key=lambda occ: (occ.date, occ.transaction_id))
        return out
