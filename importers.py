import logging
import re
from datetime import date, datetime, time
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import get_settings
from csv_utils import (
    ImportResult,
    ParsedCSV,
    missing_columns,
    normalize_header,
    parse_amount,
    parse_bool,
    parse_date,
    parse_quantity,
    parse_rate_bps,
    pick,
    read_csv,
    split_tags,
)
from models import (
    LUMP_SUM_INVESTMENT_TYPES,
    QUANTITY_SCALE,
    BudgetPeriod,
    Category,
    DebtStatus,
    InvestmentType,
    RecurringFrequency,
    TransactionType,
)
from periods import month_end, month_start
from recurrence import local_today
from schemas import (
    AccountIn,
    BudgetTargetIn,
    CategoryIn,
    DebtIn,
    InvestmentIn,
    InvestmentTargetIn,
    NoteIn,
    RepaymentIn,
    TransactionIn,
)
from services import (
    AccountService,
    BudgetTargetService,
    CategoryService,
    DebtService,
    InvestmentService,
    InvestmentTargetService,
    NoteService,
    TransactionService,
)


logger = logging.getLogger(__name__)

RowHandler = Callable[[int, dict[str, str]], None]

TRANSACTION_COLUMNS = {
    "title": ("title",),
    "amount": ("amount",),
    "date": ("date",),
    "category": ("category", "categoryname"),
}
NOTE_COLUMNS = {"title": ("title", "notetitle", "name")}
INVESTMENT_COLUMNS = {
    "name": ("name", "investmentname"),
    "type": ("type", "investmenttype"),
    "quantity": ("quantity", "units"),
    "purchase price": ("purchaseprice", "buyprice"),
    "current price": ("currentprice",),
    "purchase date": ("purchasedate", "date"),
    "account": ("account", "accountname", "bankname", "bank"),
}
BUDGET_COLUMNS = {
    "category name": ("categoryname", "category", "name"),
    "category type": ("categorytype", "type"),
    "target amount": ("targetamount", "amount"),
    "period": ("period",),
}
DEBT_COLUMNS = {
    "borrower name": ("borrowername", "borrower"),
    "amount": ("amount", "principal"),
    "lent date": ("lentdate", "date"),
}
REPAYMENT_COLUMNS = {
    "debt id": ("debtid", "debt"),
    "amount": ("amount",),
    "repayment date": ("repaymentdate", "date"),
}
ACCOUNT_COLUMNS = {
    "holder name": ("holdername", "holder", "accountholder"),
    "bank name": ("bankname", "bank"),
}
CATEGORY_COLUMNS = {
    "name": ("name", "categoryname"),
    "type": ("type", "categorytype"),
}
INVESTMENT_TARGET_COLUMNS = {
    "investment type": ("investmenttype", "type"),
    "target amount": ("targetamount", "amount"),
}

_HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{6}|[0-9a-fA-F]{3})$")

INVESTMENT_TYPE_ALIASES = {
    "stock": InvestmentType.stocks,
    "stocks": InvestmentType.stocks,
    "share": InvestmentType.stocks,
    "shares": InvestmentType.stocks,
    "equity": InvestmentType.stocks,
    "crypto": InvestmentType.crypto,
    "cryptocurrency": InvestmentType.crypto,
    "mf": InvestmentType.mutual_funds,
    "mutualfund": InvestmentType.mutual_funds,
    "mutualfunds": InvestmentType.mutual_funds,
    "bond": InvestmentType.bonds,
    "bonds": InvestmentType.bonds,
    "realestate": InvestmentType.real_estate,
    "property": InvestmentType.real_estate,
    "gold": InvestmentType.gold,
    "fd": InvestmentType.fixed_deposit,
    "fixeddeposit": InvestmentType.fixed_deposit,
    "pf": InvestmentType.provident_funds,
    "providentfund": InvestmentType.provident_funds,
    "providentfunds": InvestmentType.provident_funds,
    "safekeeping": InvestmentType.safe_keepings,
    "safekeepings": InvestmentType.safe_keepings,
    "other": InvestmentType.other,
}


def investment_type_from(value: str) -> InvestmentType:
    return INVESTMENT_TYPE_ALIASES.get(normalize_header(value), InvestmentType.other)


def _hex_color(value: str) -> Optional[str]:
    match = _HEX_COLOR.match(value.strip())
    return f"#{match.group(1).lower()}" if match else None


def _optional(row: dict[str, str], *aliases: str) -> Optional[str]:
    return pick(row, *aliases) or None


def _enum_value(enum_cls, raw: str, label: str):
    key = raw.strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return enum_cls(key)
    except ValueError as exc:
        raise ValueError(f"Invalid {label} '{raw}'") from exc


def _parse_reminder(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.strip())
    except ValueError:
        return datetime.combine(parse_date(value), time())


class ImportService:
    """CSV bulk import for every entity type.

    Rows are created through the regular services, each inside its own
    SAVEPOINT, so a failing row rolls back alone and balance effects stay
    paired with the rows that cause them. Everything that succeeded is
    committed once at the end.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.accounts = AccountService(session, user_id, autocommit=False)
        self.categories = CategoryService(session, user_id, autocommit=False)
        self.transactions = TransactionService(session, user_id, autocommit=False)
        self.investments = InvestmentService(session, user_id, autocommit=False)
        self.debts = DebtService(session, user_id, autocommit=False)
        self.notes = NoteService(session, user_id, autocommit=False)
        self.budgets = BudgetTargetService(session, user_id, autocommit=False)
        self.investment_targets = InvestmentTargetService(
            session, user_id, autocommit=False
        )

    def _parse(self, content: str, result: ImportResult) -> Optional[ParsedCSV]:
        try:
            parsed = read_csv(content)
        except ValueError as exc:
            result.add_error(0, str(exc))
            return None
        result.skipped_count = parsed.skipped
        return parsed

    def _run(
        self,
        kind: str,
        parsed: ParsedCSV,
        required: dict[str, tuple[str, ...]],
        result: ImportResult,
        handler: RowHandler,
    ) -> ImportResult:
        missing = missing_columns(parsed.headers, required)
        if missing:
            result.add_error(0, f"Missing required columns: {', '.join(missing)}")
            return result
        max_rows = get_settings().import_max_rows
        if len(parsed.rows) > max_rows:
            result.add_error(
                0, f"File has {len(parsed.rows)} rows; the limit is {max_rows}"
            )
            return result

        for row_number, row in parsed.rows:
            try:
                with self.session.begin_nested():
                    handler(row_number, row)
            except IntegrityError as exc:
                result.add_error(row_number, str(exc.orig), row)
            except (ValueError, OverflowError) as exc:
                result.add_error(row_number, str(exc), row)
            else:
                result.imported_count += 1
        self.session.commit()
        logger.info(
            f"import_done: kind={kind} user_id={self.user_id} "
            f"imported={result.imported_count} errors={len(result.errors)} "
            f"skipped={result.skipped_count}"
        )
        return result

    def _resolve_account_id(
        self, reference: str, default_account_id: Optional[int]
    ) -> Optional[int]:
        if reference:
            account = self.accounts.find_by_reference(reference)
            if account:
                return account.id
        return default_account_id

    def _transaction_row(
        self,
        txn_type: TransactionType,
        row: dict[str, str],
        default_account_id: Optional[int],
    ) -> None:
        category_name = pick(row, *TRANSACTION_COLUMNS["category"])
        if not category_name:
            raise ValueError("Category is required")
        category = self.categories.match(category_name, txn_type)
        amount_raw = pick(row, "amount")
        if not amount_raw:
            raise ValueError("Amount is required")
        date_raw = pick(row, "date")
        if not date_raw:
            raise ValueError("Date is required")
        frequency_raw = pick(row, "frequency", "recurringfrequency")
        data = TransactionIn(
            type=txn_type,
            title=pick(row, "title"),
            description=_optional(row, "description"),
            amount_cents=parse_amount(amount_raw),
            date=parse_date(date_raw),
            category_id=category.id,
            account_id=self._resolve_account_id(
                pick(row, "account", "accountname", "bankaccount"),
                default_account_id,
            ),
            tags=split_tags(pick(row, "tags")),
            notes=_optional(row, "notes"),
            is_recurring=parse_bool(pick(row, "recurring", "isrecurring")),
            recurring_frequency=(
                _enum_value(RecurringFrequency, frequency_raw, "frequency")
                if frequency_raw
                else None
            ),
        )
        self.transactions.create(data)

    def import_transactions(
        self,
        content: str,
        txn_type: TransactionType,
        default_account_id: Optional[int] = None,
    ) -> ImportResult:
        if default_account_id is not None:
            self.accounts.get(default_account_id)
        result = ImportResult()
        parsed = self._parse(content, result)
        if parsed is None:
            return result
        return self._run(
            txn_type.value,
            parsed,
            TRANSACTION_COLUMNS,
            result,
            lambda _, row: self._transaction_row(txn_type, row, default_account_id),
        )

    def import_corrected_row(
        self,
        txn_type: TransactionType,
        raw_row: dict[str, str],
        default_account_id: Optional[int] = None,
    ) -> ImportResult:
        """Re-run one row the user fixed after a failed import.

        The row is reported as row 1 since it no longer has a file position.
        """
        if default_account_id is not None:
            self.accounts.get(default_account_id)
        row = {
            normalize_header(key): (value or "").strip()
            for key, value in raw_row.items()
        }
        parsed = ParsedCSV(headers=list(row), rows=[(1, row)], skipped=0)
        return self._run(
            f"{txn_type.value}_corrected",
            parsed,
            TRANSACTION_COLUMNS,
            ImportResult(),
            lambda _, r: self._transaction_row(txn_type, r, default_account_id),
        )

    def _note_row(self, row: dict[str, str]) -> None:
        reminder_raw = pick(row, "reminderdate", "reminder", "reminderat")
        data = NoteIn(
            title=pick(row, *NOTE_COLUMNS["title"]),
            content=pick(row, "content", "body", "note"),
            color=pick(row, "color") or "#fbbf24",
            tags=split_tags(pick(row, "tags")),
            reminder_at=_parse_reminder(reminder_raw) if reminder_raw else None,
            is_pinned=parse_bool(pick(row, "ispinned", "pinned")),
            is_archived=parse_bool(pick(row, "isarchived", "archived")),
        )
        self.notes.create(data)

    def import_notes(self, content: str) -> ImportResult:
        result = ImportResult()
        parsed = self._parse(content, result)
        if parsed is None:
            return result
        return self._run(
            "notes", parsed, NOTE_COLUMNS, result, lambda _, row: self._note_row(row)
        )

    def _investment_row(self, row: dict[str, str]) -> None:
        investment_type = investment_type_from(pick(row, "type", "investmenttype"))
        reference = pick(row, *INVESTMENT_COLUMNS["account"])
        account = self.accounts.find_by_reference(reference) if reference else None
        if not account:
            raise ValueError(f"Account '{reference}' not found")

        quantity_raw = pick(row, "quantity", "units")
        if quantity_raw:
            quantity = parse_quantity(quantity_raw)
        elif investment_type in LUMP_SUM_INVESTMENT_TYPES:
            quantity = QUANTITY_SCALE
        else:
            raise ValueError("Quantity is required")

        purchase_raw = pick(row, "purchaseprice", "buyprice")
        if not purchase_raw:
            raise ValueError("Purchase price is required")
        purchase_price = parse_amount(purchase_raw)
        current_raw = pick(row, "currentprice")
        date_raw = pick(row, "purchasedate", "date")
        if not date_raw:
            raise ValueError("Purchase date is required")
        rate_raw = pick(row, "interestrate", "rate")
        maturity_raw = pick(row, "maturitydate")

        data = InvestmentIn(
            name=pick(row, "name", "investmentname"),
            type=investment_type,
            symbol=_optional(row, "symbol", "ticker"),
            quantity_micros=quantity,
            purchase_price_cents=purchase_price,
            current_price_cents=(
                parse_amount(current_raw) if current_raw else purchase_price
            ),
            purchase_date=parse_date(date_raw),
            account_id=account.id,
            notes=_optional(row, "notes"),
            interest_rate_bps=parse_rate_bps(rate_raw) if rate_raw else None,
            maturity_date=parse_date(maturity_raw) if maturity_raw else None,
        )
        self.investments.create(data)

    def import_investments(self, content: str) -> ImportResult:
        result = ImportResult()
        parsed = self._parse(content, result)
        if parsed is None:
            return result
        return self._run(
            "investments",
            parsed,
            INVESTMENT_COLUMNS,
            result,
            lambda _, row: self._investment_row(row),
        )

    def _budget_row(
        self, row: dict[str, str], today: date, seen: set[str]
    ) -> None:
        name = pick(row, *BUDGET_COLUMNS["category name"])
        if not name:
            raise ValueError("Category name is required")
        category_type = _enum_value(
            TransactionType,
            pick(row, "categorytype", "type") or "expense",
            "category type",
        )
        amount_raw = pick(row, "targetamount", "amount")
        if not amount_raw:
            raise ValueError("Target amount is required")
        amount = parse_amount(amount_raw)
        if amount <= 0:
            raise ValueError("Target amount must be greater than zero")
        period_raw = pick(row, "period")
        period = (
            _enum_value(BudgetPeriod, period_raw, "period")
            if period_raw
            else BudgetPeriod.monthly
        )
        start_raw = pick(row, "startdate")
        end_raw = pick(row, "enddate")
        start = parse_date(start_raw) if start_raw else month_start(today)
        end = parse_date(end_raw) if end_raw else month_end(today)
        if start >= end:
            raise ValueError("Start date must be before end date")

        category = self.categories.find_by_name(name, category_type)
        if category is None:
            self.categories.create(
                CategoryIn(name=name, type=category_type, included_in_budget=True)
            )
        else:
            category.included_in_budget = True

        existing = self.budgets.find_by_name(name)
        if existing:
            self.session.delete(existing)
            self.session.flush()
        self.budgets.create(
            BudgetTargetIn(
                name=name,
                category_type=category_type,
                target_amount_cents=amount,
                period=period,
                start_date=start,
                end_date=end,
            )
        )
        seen.add(name.strip().lower())

    def import_budget_targets(
        self, content: str, *, today: Optional[date] = None
    ) -> ImportResult:
        today = today or local_today()
        result = ImportResult()
        parsed = self._parse(content, result)
        if parsed is None:
            return result
        seen: set[str] = set()
        self._run(
            "budget_targets",
            parsed,
            BUDGET_COLUMNS,
            result,
            lambda _, row: self._budget_row(row, today, seen),
        )
        if result.imported_count:
            self._exclude_unlisted_categories(seen)
        return result

    def _exclude_unlisted_categories(self, seen: set[str]) -> None:
        categories = self.session.scalars(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == TransactionType.expense,
                Category.included_in_budget.is_(True),
            )
        ).all()
        excluded = 0
        for category in categories:
            if category.name.strip().lower() not in seen:
                category.included_in_budget = False
                excluded += 1
        self.session.commit()
        logger.info(
            f"budget_import_exclusions: user_id={self.user_id} excluded={excluded}"
        )

    def _debt_row(self, row: dict[str, str], result: ImportResult) -> None:
        amount_raw = pick(row, *DEBT_COLUMNS["amount"])
        if not amount_raw:
            raise ValueError("Amount is required")
        lent_raw = pick(row, "lentdate", "date")
        if not lent_raw:
            raise ValueError("Lent date is required")
        due_raw = pick(row, "duedate")
        rate_raw = pick(row, "interestrate", "rate")
        status_raw = pick(row, "status")
        data = DebtIn(
            borrower_name=pick(row, *DEBT_COLUMNS["borrower name"]),
            borrower_contact=_optional(row, "contact", "borrowercontact", "phone"),
            borrower_email=_optional(row, "email", "borroweremail"),
            amount_cents=parse_amount(amount_raw),
            interest_rate_bps=parse_rate_bps(rate_raw) if rate_raw else 0,
            lent_date=parse_date(lent_raw),
            due_date=parse_date(due_raw) if due_raw else None,
            status=(
                _enum_value(DebtStatus, status_raw, "status")
                if status_raw
                else DebtStatus.active
            ),
            purpose=_optional(row, "purpose"),
            notes=_optional(row, "notes"),
        )
        debt = self.debts.create(data, touch_balance=False)
        original_id = pick(row, "id", "originalid")
        if original_id:
            result.id_mapping[original_id] = debt.id

    def import_debts(self, content: str) -> ImportResult:
        result = ImportResult()
        parsed = self._parse(content, result)
        if parsed is None:
            return result
        return self._run(
            "debts",
            parsed,
            DEBT_COLUMNS,
            result,
            lambda _, row: self._debt_row(row, result),
        )

    def _repayment_row(
        self, row: dict[str, str], id_mapping: dict[str, int]
    ) -> None:
        original = pick(row, *REPAYMENT_COLUMNS["debt id"])
        if original in id_mapping:
            debt_id = id_mapping[original]
        else:
            try:
                debt_id = int(original)
            except ValueError as exc:
                raise ValueError(f"Invalid debt id '{original}'") from exc
        amount_raw = pick(row, "amount")
        if not amount_raw:
            raise ValueError("Amount is required")
        date_raw = pick(row, "repaymentdate", "date")
        if not date_raw:
            raise ValueError("Repayment date is required")
        self.debts.add_repayment(
            debt_id,
            RepaymentIn(
                amount_cents=parse_amount(amount_raw),
                repayment_date=parse_date(date_raw),
                notes=_optional(row, "notes"),
            ),
            touch_balance=False,
        )

    def import_repayments(
        self, content: str, id_mapping: Optional[dict[str, int]] = None
    ) -> ImportResult:
        mapping = {str(key): value for key, value in (id_mapping or {}).items()}
        result = ImportResult()
        parsed = self._parse(content, result)
        if parsed is None:
            return result
        return self._run(
            "repayments",
            parsed,
            REPAYMENT_COLUMNS,
            result,
            lambda _, row: self._repayment_row(row, mapping),
        )

    def _account_row(self, row: dict[str, str]) -> None:
        opening_raw = pick(row, "openingdate")
        balance_raw = pick(row, "balance", "openingbalance")
        data = AccountIn(
            holder_name=pick(row, *ACCOUNT_COLUMNS["holder name"]),
            bank_name=pick(row, *ACCOUNT_COLUMNS["bank name"]),
            account_number=_optional(row, "accountnumber", "number"),
            branch_name=_optional(row, "branchname", "branch"),
            branch_code=_optional(row, "branchcode"),
            account_type=_optional(row, "accounttype"),
            swift=_optional(row, "swift", "swiftcode"),
            bank_email=_optional(row, "bankemail", "email"),
            nickname=_optional(row, "nickname"),
            notes=_optional(row, "notes"),
            opening_date=parse_date(opening_raw) if opening_raw else local_today(),
            opening_balance_cents=(
                parse_amount(balance_raw, allow_negative=True) if balance_raw else 0
            ),
        )
        self.accounts.create(data)

    def import_accounts(self, content: str) -> ImportResult:
        result = ImportResult()
        parsed = self._parse(content, result)
        if parsed is None:
            return result
        return self._run(
            "accounts",
            parsed,
            ACCOUNT_COLUMNS,
            result,
            lambda _, row: self._account_row(row),
        )

    def _category_row(self, row: dict[str, str]) -> None:
        name = pick(row, *CATEGORY_COLUMNS["name"])
        if not name:
            raise ValueError("Name is required")
        type_raw = pick(row, *CATEGORY_COLUMNS["type"])
        if not type_raw:
            raise ValueError("Type is required")
        color_raw = pick(row, "color", "colour")
        color = _hex_color(color_raw) if color_raw else None
        if color_raw and color is None:
            logger.warning(f"category_import_color_ignored: value={color_raw!r}")
        budget_raw = pick(row, "includedinbudget", "inbudget", "budget")
        data = CategoryIn(
            name=name,
            type=_enum_value(TransactionType, type_raw, "category type"),
            icon=_optional(row, "icon"),
            included_in_budget=parse_bool(budget_raw) if budget_raw else True,
        )
        if color:
            data.color = color
        self.categories.create(data)

    def import_categories(self, content: str) -> ImportResult:
        result = ImportResult()
        parsed = self._parse(content, result)
        if parsed is None:
            return result
        return self._run(
            "categories",
            parsed,
            CATEGORY_COLUMNS,
            result,
            lambda _, row: self._category_row(row),
        )

    def _investment_target_row(self, row: dict[str, str]) -> None:
        type_raw = pick(row, *INVESTMENT_TARGET_COLUMNS["investment type"])
        if not type_raw:
            raise ValueError("Investment type is required")
        investment_type = INVESTMENT_TYPE_ALIASES.get(normalize_header(type_raw))
        if investment_type is None:
            raise ValueError(f"Invalid investment type '{type_raw}'")
        amount_raw = pick(row, *INVESTMENT_TARGET_COLUMNS["target amount"])
        if not amount_raw:
            raise ValueError("Target amount is required")
        amount = parse_amount(amount_raw)
        if amount <= 0:
            raise ValueError("Target amount must be greater than zero")
        date_raw = pick(row, "targetcompletiondate", "completiondate", "targetdate")
        self.investment_targets.create(
            InvestmentTargetIn(
                investment_type=investment_type,
                target_amount_cents=amount,
                target_completion_date=parse_date(date_raw) if date_raw else None,
                nickname=_optional(row, "nickname"),
            )
        )

    def import_investment_targets(self, content: str) -> ImportResult:
        result = ImportResult()
        parsed = self._parse(content, result)
        if parsed is None:
            return result
        return self._run(
            "investment_targets",
            parsed,
            INVESTMENT_TARGET_COLUMNS,
            result,
            lambda _, row: self._investment_target_row(row),
        )
