from contextlib import contextmanager
from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import scheduler
from database import Base
from models import Debt, DebtStatus
from schemas import DebtIn, UserIn
from services import DebtService, UserService


def test_run_sweep_commits_overdue_statuses(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = UserService(session).create(UserIn(email="sweep@example.com"))
        debt = DebtService(session, user.id).create(
            DebtIn(
                borrower_name="Sam",
                amount_cents=1_000,
                lent_date=date(2025, 1, 1),
                due_date=date(2025, 1, 31),
            )
        )
        debt_id = debt.id

    @contextmanager
    def fake_scope():
        with Session(engine) as session:
            yield session
            session.commit()

    monkeypatch.setattr(scheduler, "session_scope", fake_scope)
    manager = scheduler.SchedulerManager()

    assert manager.run_sweep("test", today=date(2025, 2, 1)) == 1
    assert manager.run_sweep("test", today=date(2025, 2, 2)) == 0

    with Session(engine) as session:
        assert session.get(Debt, debt_id).status == DebtStatus.overdue
