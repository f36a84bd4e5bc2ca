from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import TransactionType
from periods import Period, add_months, month_end, resolve_period
from schemas import AccountIn, CategoryIn, DebtIn, TransactionIn, UserIn
from services import (
    AccountService,
    CategoryService,
    DebtService,
    MetricsService,
    TransactionService,
    UserService,
)


def _seed(session: Session) -> int:
    user = UserService(session).create(UserIn(email="metrics@example.com"))
    account = AccountService(session, user.id).create(
        AccountIn(
            holder_name="Alex",
            bank_name="First Bank",
            opening_date=date(2025, 1, 1),
            opening_balance_cents=100_000,
        )
    )
    categories = CategoryService(session, user.id)
    salary = categories.create(CategoryIn(name="Salary", type=TransactionType.income))
    food = categories.create(CategoryIn(name="Food", type=TransactionType.expense))
    rent = categories.create(CategoryIn(name="Rent", type=TransactionType.expense))
    txns = TransactionService(session, user.id)
    for txn_type, title, amount, on, category in (
        (TransactionType.income, "Pay", 400_000, date(2025, 3, 1), salary),
        (TransactionType.expense, "Rent", 150_000, date(2025, 3, 2), rent),
        (TransactionType.expense, "Food", 50_000, date(2025, 3, 5), food),
        (TransactionType.expense, "Food", 25_000, date(2025, 1, 5), food),
    ):
        txns.create(
            TransactionIn(
                type=txn_type,
                title=title,
                amount_cents=amount,
                date=on,
                category_id=category.id,
                account_id=account.id,
            )
        )
    DebtService(session, user.id).create(
        DebtIn(borrower_name="Sam", amount_cents=30_000, lent_date=date(2025, 2, 1))
    )
    return user.id


def test_resolve_period_variants() -> None:
    today = date(2025, 3, 15)
    assert resolve_period("this_month", None, None, today=today) == Period(
        "this_month", date(2025, 3, 1), date(2025, 3, 31)
    )
    assert resolve_period("last_month", None, None, today=today) == Period(
        "last_month", date(2025, 2, 1), date(2025, 2, 28)
    )
    assert resolve_period("custom", "2025-01-01", "2025-01-31", today=today).end == date(
        2025, 1, 31
    )
    assert add_months(date(2025, 1, 31), -2) == date(2024, 11, 1)
    assert month_end(date(2024, 2, 10)) == date(2024, 2, 29)


def test_kpis_for_the_selected_period() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _seed(session)
        today = date(2025, 3, 15)
        period = resolve_period("this_month", None, None, today=today)

        kpis = MetricsService(session, user_id).kpis(period, today=today)

        assert kpis["income_cents"] == 400_000
        assert kpis["expense_cents"] == 200_000
        assert kpis["net_cents"] == 200_000
        assert kpis["savings_rate"] == 50.0
        assert kpis["total_balance_cents"] == 100_000 + 400_000 - 225_000
        assert kpis["investments_value_cents"] == 0
        assert kpis["debts_receivable_cents"] == 30_000


def test_category_breakdown_shares() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _seed(session)
        period = resolve_period("all", None, None, today=date(2025, 3, 31))

        breakdown = MetricsService(session, user_id).category_breakdown(period)

        assert [(row["name"], row["amount_cents"]) for row in breakdown] == [
            ("Rent", 150_000),
            ("Food", 75_000),
        ]
        assert round(breakdown[0]["percent"], 2) == 66.67


def test_monthly_series_fills_empty_months() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _seed(session)

        series = MetricsService(session, user_id).monthly_series(
            4, today=date(2025, 3, 15)
        )

        assert [row["label"] for row in series] == [
            "2024-12",
            "2025-01",
            "2025-02",
            "2025-03",
        ]
        assert [row["expense_cents"] for row in series] == [0, 25_000, 0, 200_000]
        assert series[-1]["income_cents"] == 400_000
        assert series[-1]["net_cents"] == 200_000
