from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from config import get_settings
from database import Base
from importers import ImportService, investment_type_from
from models import DebtStatus, InvestmentType, TransactionType
from schemas import AccountIn, BudgetTargetIn, CategoryIn, DebtIn, UserIn
from services import (
    AccountService,
    BudgetTargetService,
    CategoryService,
    DebtService,
    InvestmentService,
    InvestmentTargetService,
    NoteService,
    NotFoundError,
    TransactionService,
    UserService,
)


def _user(session: Session, email: str = "importer@example.com") -> int:
    return UserService(session).create(UserIn(email=email)).id


def _account(session: Session, user_id: int, opening: int = 100_000):
    return AccountService(session, user_id).create(
        AccountIn(
            holder_name="Alex",
            bank_name="First Bank",
            account_number="111",
            opening_date=date(2025, 1, 1),
            opening_balance_cents=opening,
        )
    )


def test_expense_import_keeps_good_rows_and_reports_bad_ones() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        account = _account(session, user_id)
        categories = CategoryService(session, user_id)
        categories.create(CategoryIn(name="Food", type=TransactionType.expense))
        transport = categories.create(
            CategoryIn(name="Transport", type=TransactionType.expense)
        )

        content = (
            "\ufeffTitle,Amount,Date,Category,Account,Tags\n"
            'Groceries,"1,234.50",2025-03-01,food,Alex - First Bank,weekly;home\n'
            "\n"
            "Bus,2.75,03/02/2025,Transpor,,\n"
            "Mystery,5.00,2025-03-03,Unknown,,\n"
            "Bad date,1.00,not-a-date,Food,,\n"
        )
        result = ImportService(session, user_id).import_transactions(
            content, TransactionType.expense
        )

        assert result.imported_count == 2
        assert result.skipped_count == 1
        assert result.success
        assert [err.row for err in result.errors] == [5, 6]
        assert "Category 'Unknown' not found" in result.errors[0].error
        assert "Invalid date" in result.errors[1].error

        txns = TransactionService(session, user_id).list()
        by_title = {txn.title: txn for txn in txns}
        assert set(by_title) == {"Groceries", "Bus"}
        assert by_title["Groceries"].amount_cents == 123_450
        assert by_title["Groceries"].account_id == account.id
        assert sorted(tag.name for tag in by_title["Groceries"].tags) == ["home", "weekly"]
        assert by_title["Bus"].category_id == transport.id
        assert by_title["Bus"].date == date(2025, 3, 2)
        assert by_title["Bus"].account_id is None

        assert account.balance_cents == 100_000 - 123_450
        assert AccountService(session, user_id).verify_balances() == []


def test_unmatched_account_falls_back_to_default() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        account = _account(session, user_id)
        CategoryService(session, user_id).create(
            CategoryIn(name="Salary", type=TransactionType.income)
        )

        content = (
            "Title,Amount,Date,Category,Account,Recurring\n"
            "Pay,1000,2025-03-31,Salary,Unknown Bank,yes\n"
        )
        result = ImportService(session, user_id).import_transactions(
            content, TransactionType.income, default_account_id=account.id
        )

        assert result.imported_count == 1
        txn = TransactionService(session, user_id).list()[0]
        assert txn.account_id == account.id
        assert txn.is_recurring is True
        assert txn.recurring_frequency.value == "monthly"
        assert account.balance_cents == 200_000


def test_missing_required_column_imports_nothing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        result = ImportService(session, user_id).import_transactions(
            "Title,Amount,Date\nLunch,5,2025-01-01\n", TransactionType.expense
        )

        assert result.imported_count == 0
        assert not result.success
        assert result.as_dict()["errors"] == [
            {"row": 0, "error": "Missing required columns: category", "data": {}}
        ]
        assert TransactionService(session, user_id).list() == []


def test_empty_file_and_row_limit_are_row_zero_errors(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        service = ImportService(session, user_id)

        empty = service.import_notes("\n\n")
        assert [(e.row, e.error) for e in empty.errors] == [(0, "CSV file is empty")]

        monkeypatch.setattr(get_settings(), "import_max_rows", 1)
        limited = service.import_notes("Title\nOne\nTwo\n")
        assert limited.imported_count == 0
        assert limited.errors[0].row == 0
        assert "limit is 1" in limited.errors[0].error


def test_default_account_must_belong_to_caller() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        owner = _user(session)
        account = _account(session, owner)
        intruder = _user(session, "intruder@example.com")

        with pytest.raises(NotFoundError):
            ImportService(session, intruder).import_transactions(
                "Title,Amount,Date,Category\n", TransactionType.expense, account.id
            )


def test_corrected_row_is_imported_on_its_own() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        CategoryService(session, user_id).create(
            CategoryIn(name="Transport", type=TransactionType.expense)
        )

        service = ImportService(session, user_id)
        failed = service.import_corrected_row(
            TransactionType.expense,
            {"Title": "Bus", "Amount": "2.75", "Date": "2025-03-02", "Category": "Boat"},
        )
        assert failed.imported_count == 0
        assert failed.errors[0].row == 1

        fixed = service.import_corrected_row(
            TransactionType.expense,
            {"Title": "Bus", "Amount": "2.75", "Date": "2025-03-02", "Category": "Transport"},
        )
        assert fixed.imported_count == 1
        assert TransactionService(session, user_id).list()[0].amount_cents == 275


def test_investment_import_debits_account_and_maps_types() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        account = _account(session, user_id, opening=20_000)

        content = (
            "Name,Type,Quantity,Purchase Price,Current Price,Purchase Date,Bank Name\n"
            "ACME,Equity,10,5.00,6.00,2025-01-15,First Bank\n"
            "Term deposit,FD,,50.00,,2025-01-20,First\n"
            "Whale,stock,1000,100,100,2025-01-20,First Bank\n"
            "Lost,stock,1,1,1,2025-01-20,Nowhere Bank\n"
            "Coin,doge,2,10,12,2025-01-21,First Bank\n"
        )
        result = ImportService(session, user_id).import_investments(content)

        assert result.imported_count == 3
        assert [err.row for err in result.errors] == [4, 5]
        assert "Insufficient balance" in result.errors[0].error
        assert "Account 'Nowhere Bank' not found" == result.errors[1].error

        by_name = {inv.name: inv for inv in InvestmentService(session, user_id).list_all()}
        assert by_name["ACME"].type == InvestmentType.stocks
        assert by_name["Term deposit"].type == InvestmentType.fixed_deposit
        assert by_name["Term deposit"].current_price_cents == 5_000
        assert by_name["Coin"].type == InvestmentType.other

        assert account.balance_cents == 20_000 - 5_000 - 5_000 - 2_000
        assert AccountService(session, user_id).verify_balances() == []


def test_investment_type_aliases() -> None:
    assert investment_type_from("Mutual Fund") == InvestmentType.mutual_funds
    assert investment_type_from("real-estate") == InvestmentType.real_estate
    assert investment_type_from("PF") == InvestmentType.provident_funds
    assert investment_type_from("art") == InvestmentType.other


def test_budget_import_replaces_targets_and_excludes_unlisted_categories() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        categories = CategoryService(session, user_id)
        categories.create(CategoryIn(name="Food", type=TransactionType.expense))
        categories.create(CategoryIn(name="Fun", type=TransactionType.expense))
        budgets = BudgetTargetService(session, user_id)
        budgets.create(
            BudgetTargetIn(
                name="Food",
                target_amount_cents=10_000,
                start_date=date(2025, 1, 1),
                end_date=date(2025, 1, 31),
            )
        )

        content = (
            "Category Name,Category Type,Target Amount,Period,Start Date,End Date\n"
            "Food,expense,300,monthly,,\n"
            "Travel,expense,1200,yearly,2025-01-01,2025-12-31\n"
            "Broken,expense,0,monthly,,\n"
            "Backwards,expense,10,monthly,2025-05-01,2025-04-01\n"
        )
        result = ImportService(session, user_id).import_budget_targets(
            content, today=date(2025, 3, 15)
        )

        assert result.imported_count == 2
        assert [err.row for err in result.errors] == [4, 5]

        targets = {t.name: t for t in budgets.list()}
        assert set(targets) == {"Food", "Travel"}
        assert targets["Food"].target_amount_cents == 30_000
        assert targets["Food"].start_date == date(2025, 3, 1)
        assert targets["Food"].end_date == date(2025, 3, 31)
        assert targets["Travel"].period.value == "yearly"

        inclusion = {c.name: c.included_in_budget for c in categories.list_all()}
        assert inclusion == {"Food": True, "Fun": False, "Travel": True}


def test_debts_then_repayments_use_the_id_mapping() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        other_id = _user(session, "other@example.com")
        foreign = DebtService(session, other_id).create(
            DebtIn(borrower_name="Stranger", amount_cents=500, lent_date=date(2025, 1, 1))
        )
        service = ImportService(session, user_id)

        debts = service.import_debts(
            "ID,Borrower Name,Amount,Lent Date,Interest Rate,Due Date,Status\n"
            "d1,Sam,100.00,2025-01-01,,2025-06-01,\n"
            "d2,Kim,50,2025-02-01,5%,,active\n"
            "d3,,10,2025-02-01,,,\n"
        )
        assert debts.imported_count == 2
        assert [err.row for err in debts.errors] == [4]
        assert set(debts.id_mapping) == {"d1", "d2"}

        kim = DebtService(session, user_id).get(debts.id_mapping["d2"])
        assert kim.interest_rate_bps == 500
        assert kim.account_id is None

        repayments = service.import_repayments(
            "Debt ID,Amount,Repayment Date,Notes\n"
            "d1,40,2025-02-01,first\n"
            "d1,60,2025-03-01,\n"
            "d2,1000,2025-03-01,too much\n"
            f"{foreign.id},5,2025-03-01,\n"
            "abc,5,2025-03-01,\n",
            debts.id_mapping,
        )
        assert repayments.imported_count == 2
        assert [err.row for err in repayments.errors] == [4, 5, 6]
        assert "exceeds remaining balance" in repayments.errors[0].error
        assert repayments.errors[1].error == "Debt not found"
        assert repayments.errors[2].error == "Invalid debt id 'abc'"

        sam = DebtService(session, user_id).get(debts.id_mapping["d1"])
        assert sam.status == DebtStatus.fully_paid
        assert [r.amount_cents for r in sam.repayments] == [4_000, 6_000]
        assert foreign.repayments == []


def test_account_import_rejects_reused_numbers() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        result = ImportService(session, user_id).import_accounts(
            "Holder Name,Bank Name,Account Number,Balance,Opening Date\n"
            'Alex,First Bank,111,"1,000.00",2025-01-01\n'
            "Alex,Second Bank,111,5,2025-01-01\n"
            "Jo,Third Bank,,-25.50,\n"
        )

        assert result.imported_count == 2
        assert [err.row for err in result.errors] == [3]
        assert "already in use" in result.errors[0].error

        balances = {
            a.bank_name: a.balance_cents
            for a in AccountService(session, user_id).list_all()
        }
        assert balances == {"First Bank": 100_000, "Third Bank": -2_550}


def test_note_import_reads_flags_and_reminders() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        result = ImportService(session, user_id).import_notes(
            "Note Title,Content,Tags,Reminder Date,Is Pinned\n"
            "Call bank,Ask about fees,bank;todo,2025-04-01,yes\n"
            ",,,,\n"
            "Plan trip,,travel,not a date,no\n"
        )

        assert result.imported_count == 1
        assert result.skipped_count == 1
        assert [err.row for err in result.errors] == [4]

        note = NoteService(session, user_id).list_active()[0]
        assert note.title == "Call bank"
        assert note.tags == ["bank", "todo"]
        assert note.is_pinned is True
        assert note.reminder_at == datetime(2025, 4, 1)


@pytest.mark.parametrize("cell", ["Infinity", "1e30", "99999999999999999999", "NaN"])
def test_malformed_amount_is_a_row_error(cell) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        account = _account(session, user_id)
        CategoryService(session, user_id).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )

        result = ImportService(session, user_id).import_transactions(
            "Title,Amount,Date,Category,Account\n"
            "Good,1.00,2025-03-01,Food,First Bank\n"
            f"Bad,{cell},2025-03-02,Food,First Bank\n"
            "Also good,2.005,2025-03-03,Food,First Bank\n",
            TransactionType.expense,
        )

        assert result.imported_count == 2
        assert [err.row for err in result.errors] == [3]
        assert result.errors[0].data["title"] == "Bad"
        assert sorted(t.amount_cents for t in TransactionService(session, user_id).list()) == [
            100,
            201,
        ]
        assert account.balance_cents == 100_000 - 301
        assert AccountService(session, user_id).verify_balances() == []


def test_category_import_validates_type_color_and_duplicates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        result = ImportService(session, user_id).import_categories(
            "Name,Type,Color,Icon,Included In Budget\n"
            "Salary,INCOME,#10B981,wallet,\n"
            "Food & Dining,expense,EF4444,utensils,yes\n"
            "Gifts,Expense,not-a-colour,,no\n"
            "food & dining,EXPENSE,,,\n"
            "Pets,plant,,,\n"
            ",expense,,,\n"
        )

        assert result.imported_count == 3
        assert [err.row for err in result.errors] == [5, 6, 7]
        assert result.errors[0].error == "Category with this name already exists"
        assert result.errors[1].error == "Invalid category type 'plant'"
        assert result.errors[2].error == "Name is required"

        by_name = {c.name: c for c in CategoryService(session, user_id).list_all()}
        assert set(by_name) == {"Salary", "Food & Dining", "Gifts"}
        assert by_name["Salary"].type == TransactionType.income
        assert by_name["Salary"].color == "#10b981"
        assert by_name["Salary"].icon == "wallet"
        assert by_name["Food & Dining"].color == "#ef4444"
        assert by_name["Gifts"].color == "#6366f1"
        assert by_name["Gifts"].included_in_budget is False
        assert by_name["Food & Dining"].included_in_budget is True


def test_investment_target_import_keeps_one_target_per_type() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        result = ImportService(session, user_id).import_investment_targets(
            "Investment Type,Target Amount,Target Completion Date,Nickname\n"
            "STOCKS,50000,2026-12-31,Retirement\n"
            "Real Estate,200000,,\n"
            "equity,100,,\n"
            "yacht,10,,\n"
            "gold,0,,\n"
            "crypto,10000,someday,\n"
        )

        assert result.imported_count == 2
        assert [err.row for err in result.errors] == [4, 5, 6, 7]
        assert "already exists" in result.errors[0].error
        assert result.errors[1].error == "Invalid investment type 'yacht'"
        assert "greater than zero" in result.errors[2].error
        assert "Invalid date" in result.errors[3].error

        targets = {
            t.investment_type: t
            for t in InvestmentTargetService(session, user_id).list_targets()
        }
        assert set(targets) == {InvestmentType.stocks, InvestmentType.real_estate}
        assert targets[InvestmentType.stocks].target_amount_cents == 5_000_000
        assert targets[InvestmentType.stocks].target_completion_date == date(2026, 12, 31)
        assert targets[InvestmentType.stocks].nickname == "Retirement"
        assert targets[InvestmentType.real_estate].nickname is None
