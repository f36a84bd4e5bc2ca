from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import QUANTITY_SCALE, InvestmentType
from schemas import (
    AccountIn,
    InvestmentIn,
    InvestmentTargetIn,
    InvestmentTargetUpdate,
    UserIn,
)
from services import (
    AccountService,
    DuplicateError,
    InvestmentService,
    InvestmentTargetService,
    UserService,
)


def _seed(session: Session):
    user = UserService(session).create(UserIn(email="investor@example.com"))
    accounts = AccountService(session, user.id)
    first = accounts.create(
        AccountIn(
            holder_name="Alex",
            bank_name="First Bank",
            opening_date=date(2025, 1, 1),
            opening_balance_cents=500_000,
        )
    )
    second = accounts.create(
        AccountIn(
            holder_name="Alex",
            bank_name="Second Bank",
            opening_date=date(2025, 1, 1),
            opening_balance_cents=500_000,
        )
    )
    investments = InvestmentService(session, user.id)
    investments.create(
        InvestmentIn(
            name="ACME",
            type=InvestmentType.stocks,
            quantity_micros=10 * QUANTITY_SCALE,
            purchase_price_cents=1_000,
            current_price_cents=1_200,
            purchase_date=date(2025, 1, 10),
            account_id=first.id,
        )
    )
    investments.create(
        InvestmentIn(
            name="Term deposit",
            type=InvestmentType.fixed_deposit,
            quantity_micros=QUANTITY_SCALE,
            purchase_price_cents=50_000,
            current_price_cents=52_000,
            purchase_date=date(2025, 1, 12),
            account_id=second.id,
        )
    )
    investments.create(
        InvestmentIn(
            name="Gold coin",
            type=InvestmentType.gold,
            quantity_micros=QUANTITY_SCALE // 2,
            purchase_price_cents=40_000,
            current_price_cents=36_000,
            purchase_date=date(2025, 1, 15),
            account_id=first.id,
        )
    )
    return user, first, second


def test_portfolio_summary_totals_by_type() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, _, _ = _seed(session)
        summary = InvestmentService(session, user.id).portfolio_summary()

        assert summary["total_cost_cents"] == 10_000 + 50_000 + 20_000
        assert summary["total_value_cents"] == 12_000 + 52_000 + 18_000
        assert summary["gain_cents"] == 2_000
        assert summary["gain_percent"] == pytest.approx(2.5)
        assert [bucket["type"] for bucket in summary["by_type"]] == [
            "fixed_deposit",
            "gold",
            "stocks",
        ]
        gold = summary["by_type"][1]
        assert gold["count"] == 1
        assert gold["gain_cents"] == -2_000


def test_withheld_by_bank_skips_externally_held_types() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, first, second = _seed(session)
        accounts = AccountService(session, user.id)

        assert accounts.withheld_by_bank() == {"First Bank": 10_000, "Second Bank": 50_000}
        assert first.balance_cents == 500_000 - 10_000 - 20_000
        assert second.balance_cents == 450_000
        assert accounts.verify_balances() == []


def test_target_progress_and_uniqueness_per_type() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, _, _ = _seed(session)
        targets = InvestmentTargetService(session, user.id)
        stocks = targets.create(
            InvestmentTargetIn(
                investment_type=InvestmentType.stocks,
                target_amount_cents=48_000,
                target_completion_date=date(2025, 6, 30),
            )
        )
        targets.create(
            InvestmentTargetIn(
                investment_type=InvestmentType.fixed_deposit,
                target_amount_cents=50_000,
            )
        )

        with pytest.raises(DuplicateError):
            targets.create(
                InvestmentTargetIn(
                    investment_type=InvestmentType.stocks, target_amount_cents=1
                )
            )

        progress = targets.progress(date(2025, 7, 1))
        assert [item["investment_type"] for item in progress] == [
            "fixed_deposit",
            "stocks",
        ]
        deposit, stock = progress
        assert deposit["is_complete"] is True
        assert deposit["progress_percent"] == 100.0
        assert deposit["remaining_cents"] == 0
        assert stock["current_amount_cents"] == 12_000
        assert stock["progress_percent"] == pytest.approx(25.0)
        assert stock["days_remaining"] == -1
        assert stock["is_overdue"] is True

        targets.update(stocks.id, InvestmentTargetUpdate(target_completion_date=None))
        stock = targets.progress(date(2025, 7, 1))[1]
        assert stock["days_remaining"] is None
        assert stock["is_overdue"] is False
