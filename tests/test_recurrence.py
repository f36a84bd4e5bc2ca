from datetime import date, datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import DebtStatus, RecurringFrequency, TransactionType
from recurrence import (
    RecurringProjector,
    next_occurrence,
    nth_occurrence,
    occurrences_between,
)
from schemas import CategoryIn, DebtIn, NoteIn, TransactionIn, UserIn
from services import (
    CalendarService,
    CategoryService,
    DebtService,
    NoteService,
    TransactionService,
    UserService,
)


def test_monthly_occurrence_snaps_to_month_end_without_drifting():
    anchor = date(2024, 1, 31)
    assert nth_occurrence(RecurringFrequency.monthly, anchor, 1) == date(2024, 2, 29)
    assert nth_occurrence(RecurringFrequency.monthly, anchor, 2) == date(2024, 3, 31)
    assert nth_occurrence(RecurringFrequency.monthly, anchor, 3) == date(2024, 4, 30)


def test_occurrences_between_excludes_the_anchor_itself():
    assert list(
        occurrences_between(
            RecurringFrequency.daily, date(2025, 1, 1), date(2025, 1, 1), date(2025, 1, 3)
        )
    ) == [date(2025, 1, 2), date(2025, 1, 3)]

    assert list(
        occurrences_between(
            RecurringFrequency.weekly, date(2025, 1, 1), date(2025, 1, 10), date(2025, 1, 31)
        )
    ) == [date(2025, 1, 15), date(2025, 1, 22), date(2025, 1, 29)]

    assert list(
        occurrences_between(
            RecurringFrequency.monthly, date(2025, 1, 31), date(2025, 2, 1), date(2025, 5, 31)
        )
    ) == [date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30), date(2025, 5, 31)]


def test_yearly_leap_day_falls_back_to_february_28():
    anchor = date(2024, 2, 29)
    assert next_occurrence(RecurringFrequency.yearly, anchor, date(2025, 1, 1)) == date(
        2025, 2, 28
    )
    assert next_occurrence(RecurringFrequency.yearly, anchor, date(2027, 3, 1)) == date(
        2028, 2, 29
    )


def test_projector_only_reads_recurring_transactions():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = UserService(session).create(UserIn(email="plans@example.com"))
        categories = CategoryService(session, user.id)
        rent = categories.create(CategoryIn(name="Rent", type=TransactionType.expense))
        salary = categories.create(CategoryIn(name="Salary", type=TransactionType.income))
        txns = TransactionService(session, user.id)
        rent_txn = txns.create(
            TransactionIn(
                type=TransactionType.expense,
                title="Rent",
                amount_cents=90_000,
                date=date(2025, 1, 31),
                category_id=rent.id,
                is_recurring=True,
            )
        )
        pay_txn = txns.create(
            TransactionIn(
                type=TransactionType.income,
                title="Salary",
                amount_cents=300_000,
                date=date(2025, 1, 15),
                category_id=salary.id,
                is_recurring=True,
                recurring_frequency=RecurringFrequency.monthly,
            )
        )
        txns.create(
            TransactionIn(
                type=TransactionType.expense,
                title="One-off",
                amount_cents=1_000,
                date=date(2025, 1, 20),
                category_id=rent.id,
            )
        )

        projected = RecurringProjector(session, user.id).project(
            date(2025, 2, 1), date(2025, 3, 31)
        )

        assert [(occ.transaction_id, occ.date) for occ in projected] == [
            (pay_txn.id, date(2025, 2, 15)),
            (rent_txn.id, date(2025, 2, 28)),
            (pay_txn.id, date(2025, 3, 15)),
            (rent_txn.id, date(2025, 3, 31)),
        ]
        assert len(txns.list()) == 3


def test_calendar_merges_reminders_due_dates_and_recurring_entries():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = UserService(session).create(UserIn(email="calendar@example.com"))
        rent = CategoryService(session, user.id).create(
            CategoryIn(name="Rent", type=TransactionType.expense)
        )
        rent_txn = TransactionService(session, user.id).create(
            TransactionIn(
                type=TransactionType.expense,
                title="Rent",
                amount_cents=90_000,
                date=date(2025, 1, 31),
                category_id=rent.id,
                is_recurring=True,
            )
        )
        notes = NoteService(session, user.id)
        reminder = notes.create(
            NoteIn(title="Call the bank", reminder_at=datetime(2025, 2, 14, 9, 30))
        )
        notes.create(
            NoteIn(
                title="Old idea",
                reminder_at=datetime(2025, 2, 15, 9, 0),
                is_archived=True,
            )
        )
        debts = DebtService(session, user.id)
        due = debts.create(
            DebtIn(
                borrower_name="Sam",
                amount_cents=5_000,
                lent_date=date(2025, 1, 1),
                due_date=date(2025, 2, 20),
            )
        )
        debts.create(
            DebtIn(
                borrower_name="Kim",
                amount_cents=5_000,
                lent_date=date(2025, 1, 1),
                due_date=date(2025, 2, 10),
                status=DebtStatus.fully_paid,
            )
        )

        events = CalendarService(session, user.id).events(
            date(2025, 2, 1), date(2025, 2, 28)
        )

        assert [(e["date"], e["kind"], e["ref_id"]) for e in events] == [
            (date(2025, 2, 14), "note_reminder", reminder.id),
            (date(2025, 2, 20), "debt_due", due.id),
            (date(2025, 2, 28), "recurring_expense", rent_txn.id),
        ]
        assert events[1]["title"] == "Sam repayment due"
        assert events[2]["amount_cents"] == 90_000
